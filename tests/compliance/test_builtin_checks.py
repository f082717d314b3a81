from policygate.compliance.checks import (
    check_api_server_anonymous_auth,
    check_default_deny_policies,
    check_image_pull_policy,
    check_kyverno_policies,
    check_latest_image_tags,
    check_network_policies,
    check_plaintext_secrets,
    check_privileged_pods,
    check_rbac_enabled,
    check_resource_limits,
    check_root_containers,
    check_secret_usage,
    check_security_contexts,
    make_policy_violations_check,
)
from policygate.compliance.types import CheckStatus
from policygate.policy.loader import load_policy


def _pod(name="web", namespace="default", **container):
    base = {"name": "app", "image": "nginx:1.25"}
    base.update(container)
    return {"kind": "Pod", "metadata": {"name": name, "namespace": namespace}, "spec": {"containers": [base]}}


HARDENED = _pod(
    securityContext={"runAsNonRoot": True, "runAsUser": 1000},
    resources={"limits": {"cpu": "500m"}},
    imagePullPolicy="Always",
    env=[{"name": "DB_PASSWORD", "valueFrom": {"secretKeyRef": {"name": "db", "key": "password"}}}],
)


def test_anonymous_auth():
    assert check_api_server_anonymous_auth({"apiServer": {"flags": {"anonymous-auth": "false"}}}).status == CheckStatus.PASS
    assert check_api_server_anonymous_auth({"apiServer": {"flags": {"anonymous-auth": False}}}).status == CheckStatus.PASS
    failed = check_api_server_anonymous_auth({})
    assert failed.status == CheckStatus.FAIL
    assert failed.details["reason"] == "Anonymous auth not explicitly disabled"


def test_rbac_enabled():
    assert check_rbac_enabled({"apiVersions": ["v1", "rbac.authorization.k8s.io/v1"]}).status == CheckStatus.PASS
    assert check_rbac_enabled({"apiVersions": ["v1"]}).status == CheckStatus.FAIL


def test_privileged_and_root_containers():
    privileged = {"pods": [_pod(securityContext={"privileged": True})]}
    result = check_privileged_pods(privileged)
    assert result.status == CheckStatus.WARN
    assert result.details["pods"] == ["default/web"]
    assert check_privileged_pods({"pods": [HARDENED]}).status == CheckStatus.PASS

    root = {"pods": [_pod(securityContext={"runAsUser": 0})]}
    assert check_root_containers(root).status == CheckStatus.WARN
    pod_level_root = _pod()
    pod_level_root["spec"]["securityContext"] = {"runAsUser": 0}
    assert check_root_containers({"pods": [pod_level_root]}).status == CheckStatus.WARN
    assert check_root_containers({"pods": [HARDENED]}).status == CheckStatus.PASS


def test_security_contexts():
    assert check_security_contexts({"pods": [_pod()]}).status == CheckStatus.WARN
    assert check_security_contexts({"pods": [HARDENED]}).status == CheckStatus.PASS


def test_network_policies_and_default_deny():
    default_deny = {"spec": {"podSelector": {}, "policyTypes": ["Ingress"]}}
    scoped = {"spec": {"podSelector": {"matchLabels": {"app": "web"}}, "policyTypes": ["Ingress"]}}

    assert check_network_policies({}).status == CheckStatus.FAIL
    assert check_network_policies({"networkPolicies": [scoped]}).status == CheckStatus.PASS
    assert check_default_deny_policies({"networkPolicies": [scoped]}).status == CheckStatus.WARN
    assert check_default_deny_policies({"networkPolicies": {"items": [scoped, default_deny]}}).status == CheckStatus.PASS


def test_latest_image_tags():
    snapshot = {"pods": [_pod(image="nginx:latest"), _pod(name="b", image="redis"), _pod(name="c", image="ghcr.io/acme/api:1.0")]}
    result = check_latest_image_tags(snapshot)
    assert result.status == CheckStatus.WARN
    assert result.details["images"] == ["nginx:latest", "redis"]

    pinned = {"pods": [_pod(image="redis@sha256:" + "a" * 64), _pod(image="registry:5000/app:2")]}
    assert check_latest_image_tags(pinned).status == CheckStatus.PASS


def test_image_pull_policy():
    assert check_image_pull_policy({"pods": [_pod()]}).status == CheckStatus.WARN
    assert check_image_pull_policy({"pods": [HARDENED]}).status == CheckStatus.PASS


def test_plaintext_secrets():
    leaking = _pod(
        env=[
            {"name": "DB_CREDENTIAL", "value": "supersecret"},
            {"name": "KEYCLOAK_URL", "value": "https://auth.example.com"},
            {"name": "LOG_LEVEL", "value": "debug"},
        ]
    )
    result = check_plaintext_secrets({"pods": [leaking]})
    assert result.status == CheckStatus.FAIL
    assert result.details["env"] == ["default/web/app/DB_CREDENTIAL"]
    assert check_plaintext_secrets({"pods": [HARDENED]}).status == CheckStatus.PASS


def test_plaintext_secrets_ignores_env_names():
    named = _pod(env=[{"name": "API_TOKEN_URL", "value": "https://issuer.example.com"}, {"name": "SECRET_NAME", "value": ""}])
    assert check_plaintext_secrets({"pods": [named]}).status == CheckStatus.PASS



def test_secret_usage():
    assert check_secret_usage({"pods": [HARDENED]}).status == CheckStatus.PASS
    assert check_secret_usage({"pods": [_pod()]}).status == CheckStatus.INFO


def test_resource_limits():
    assert check_resource_limits({"pods": [_pod()]}).status == CheckStatus.WARN
    assert check_resource_limits({"pods": [HARDENED]}).status == CheckStatus.PASS


def test_kyverno_policies():
    assert check_kyverno_policies({"namespaces": ["default"]}).status == CheckStatus.FAIL
    assert check_kyverno_policies({"namespaces": ["kyverno"]}).status == CheckStatus.WARN
    installed = {"namespaces": [{"metadata": {"name": "kyverno"}}], "clusterPolicies": [{"metadata": {"name": "p"}}]}
    assert check_kyverno_policies(installed).status == CheckStatus.PASS


def test_policy_violations_evaluates_cluster_policies():
    cluster_policy = {
        "apiVersion": "kyverno.io/v1",
        "kind": "ClusterPolicy",
        "metadata": {"name": "require-tag"},
        "spec": {
            "validationFailureAction": "audit",
            "rules": [
                {
                    "name": "image-has-tag",
                    "match": {"resources": {"kinds": ["Pod"]}},
                    "validate": {"pattern": {"spec": {"containers": [{"image": "*:*"}]}}},
                }
            ],
        },
    }
    check = make_policy_violations_check()
    snapshot = {"pods": [_pod(image="nginx"), _pod(name="ok")], "clusterPolicies": [cluster_policy]}

    result = check.executor(snapshot)

    assert result.status == CheckStatus.WARN
    assert result.details["count"] == 1
    assert result.details["evaluated"][0]["resource"] == "default/web"


def test_policy_violations_counts_reports_and_injected_policies():
    injected = load_policy(
        {
            "name": "no-privileged",
            "enforcementMode": "enforce",
            "rules": [
                {
                    "name": "not-privileged",
                    "match": {"kinds": ["Pod"]},
                    "validate": {"pattern": {"spec": {"containers": [{"=(securityContext)": {"=(privileged)": False}}]}}},
                }
            ],
        }
    )
    check = make_policy_violations_check(policies=[injected])

    clean = check.executor({"pods": [HARDENED]})
    assert clean.status == CheckStatus.PASS

    reported = check.executor({"pods": [HARDENED], "policyReports": [{"summary": {"pass": 4, "fail": 2}}]})
    assert reported.status == CheckStatus.WARN
    assert reported.details["reported"] == 2

    flagged = check.executor({"pods": [_pod(securityContext={"privileged": True})]})
    assert flagged.status == CheckStatus.WARN
    assert flagged.details["evaluated"][0]["policy"] == "no-privileged"


def test_policy_violations_skips_unparseable_installed_policy():
    mutate_policy = {
        "apiVersion": "kyverno.io/v1",
        "kind": "ClusterPolicy",
        "metadata": {"name": "add-labels"},
        "spec": {
            "rules": [
                {
                    "name": "add-team",
                    "match": {"resources": {"kinds": ["Pod"]}},
                    "mutate": {"patchStrategicMerge": {"metadata": {"labels": {"team": "core"}}}},
                }
            ]
        },
    }
    check = make_policy_violations_check()
    snapshot = {
        "pods": [HARDENED],
        "clusterPolicies": [mutate_policy],
        "policyReports": [{"summary": {"fail": 3}}],
    }

    result = check.executor(snapshot)

    assert result.status == CheckStatus.WARN
    assert result.details["count"] == 3
    assert result.details["reported"] == 3
    assert [s["policy"] for s in result.details["skipped_policies"]] == ["add-labels"]
    assert "InvalidRule" in result.details["skipped_policies"][0]["error"]
