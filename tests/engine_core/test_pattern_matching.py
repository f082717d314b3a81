from policygate.engine_core.pattern import first_mismatch, glob_match, matches


def test_star_matches_any_non_null_scalar():
    assert matches({"image": "*"}, {"image": "nginx:1.2"})
    assert matches({"replicas": "*"}, {"replicas": 3})
    assert matches({"flag": "*"}, {"flag": False})
    assert not matches({"image": "*"}, {"image": None})
    assert not matches({"image": "*"}, {})
    assert not matches({"image": "*"}, {"image": {"name": "nginx"}})


def test_mapping_pattern_is_subset():
    document = {"kind": "Pod", "metadata": {"name": "web", "labels": {"app": "web"}}, "spec": {}}
    assert matches({"metadata": {"labels": {"app": "web"}}}, document)
    assert not matches({"metadata": {"labels": {"team": "x"}}}, document)


def test_single_element_sequence_is_universal_predicate():
    pattern = {"containers": [{"securityContext": {"runAsNonRoot": True}}]}
    good = {
        "containers": [
            {"securityContext": {"runAsNonRoot": True}},
            {"securityContext": {"runAsNonRoot": True}},
        ]
    }
    bad = {
        "containers": [
            {"securityContext": {"runAsNonRoot": True}},
            {"securityContext": {"runAsNonRoot": False}},
        ]
    }
    assert matches(pattern, good)
    assert not matches(pattern, bad)


def test_equal_length_sequences_compare_element_wise():
    assert matches({"args": ["--a", "--b"]}, {"args": ["--a", "--b"]})
    assert not matches({"args": ["--a", "--b"]}, {"args": ["--b", "--a"]})
    assert not matches({"args": ["--a", "--b"]}, {"args": ["--a", "--b", "--c"]})


def test_type_mismatch_is_non_match_not_error():
    assert not matches({"spec": {"containers": []}}, {"spec": "oops"})
    assert not matches({"spec": "x"}, {"spec": {"a": 1}})
    assert not matches({"items": [1]}, {"items": 1})
    assert not matches({"a": 1}, ["not", "a", "mapping"])


def test_scalars_are_type_aware():
    assert matches({"replicas": 2}, {"replicas": 2})
    assert matches({"replicas": 2}, {"replicas": 2.0})
    assert not matches({"replicas": 2}, {"replicas": "2"})
    assert not matches({"enabled": True}, {"enabled": 1})


def test_tag_glob_requires_colon():
    assert glob_match("*:*", "nginx:latest")
    assert glob_match("*:*", "ghcr.io/org/app:1.0")
    assert not glob_match("*:*", "nginx")


def test_glob_star_next_to_slash_stays_in_segment():
    assert glob_match("ghcr.io/*", "ghcr.io/app")
    assert not glob_match("ghcr.io/*", "ghcr.io/org/app")
    assert glob_match("ghcr.io/*/*", "ghcr.io/org/app")
    assert glob_match("ghcr.io/org/app:*", "ghcr.io/org/app:1.0")


def test_question_mark_matches_one_character():
    assert glob_match("v?", "v1")
    assert not glob_match("v?", "v10")


def test_glob_never_matches_null_or_collections():
    assert not glob_match("*", None)
    assert not glob_match("a*", ["abc"])


def test_optional_anchor():
    pattern = {"spec": {"=(hostNetwork)": False}}
    assert matches(pattern, {"spec": {}})
    assert matches(pattern, {"spec": {"hostNetwork": False}})
    assert not matches(pattern, {"spec": {"hostNetwork": True}})


def test_negation_anchor():
    pattern = {"spec": {"X(hostPID)": "null"}}
    assert matches(pattern, {"spec": {}})
    assert matches(pattern, {"spec": {"hostPID": None}})
    assert not matches(pattern, {"spec": {"hostPID": True}})


def test_empty_document_sequence_satisfies_predicate():
    assert matches({"containers": [{"image": "*:*"}]}, {"containers": []})


def test_matching_is_deterministic():
    pattern = {"spec": {"containers": [{"image": "*:*"}]}}
    document = {"spec": {"containers": [{"image": "nginx"}]}}
    results = {matches(pattern, document) for _ in range(5)}
    assert results == {False}


def test_deeply_nested_input_does_not_raise():
    document = {}
    cursor = document
    for _ in range(5000):
        cursor["a"] = {}
        cursor = cursor["a"]
    pattern = {}
    cursor = pattern
    for _ in range(5000):
        cursor["a"] = {}
        cursor = cursor["a"]
    cursor["b"] = 1
    assert matches(pattern, document) is False


def test_first_mismatch_reports_path():
    pattern = {"spec": {"containers": [{"image": "*:*"}]}}
    document = {"spec": {"containers": [{"image": "nginx:1"}, {"image": "redis"}]}}
    assert first_mismatch(pattern, document) == "spec.containers[1].image"
    assert first_mismatch(pattern, {"spec": {"containers": [{"image": "a:b"}]}}) is None
    assert first_mismatch({"metadata": {"name": "x"}}, {"spec": {}}) == "metadata"
