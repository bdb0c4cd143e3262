"""
Tests for cascade rule parsing and PathIndex enumeration.
"""

import json

import pytest

from fanout.errors import ConfigurationError
from fanout.services.path_index import PathIndex, load_rules, parse_rule


class TestPathIndex:
    def setup_method(self):
        self.index = PathIndex()

    def test_user_paths(self):
        templates = [str(t) for t in self.index.paths_for("user", "u1")]
        assert templates == [
            "feed/u1",
            "followers/u1",
            "people/u1",
            "posts/*",
            "likes/*/u1",
            "comments/*/*",
        ]

    def test_wildcard_queries_get_the_id(self):
        by_template = {t.template: t for t in self.index.paths_for("user", "u1")}
        assert by_template["posts/*"].query.field == "author/uid"
        assert by_template["posts/*"].query.equals == "u1"
        assert by_template["likes/*/u1"].query.field == "u1"
        assert by_template["likes/*/u1"].query.start_at == 0
        assert by_template["comments/*/*"].wildcards == 2

    def test_post_paths_keep_bound_placeholders(self):
        templates = {str(t) for t in self.index.paths_for("post", "p1")}
        assert "posts/p1" in templates
        assert "people/{author_uid}/posts/p1" in templates
        assert "hashtags/{tag}/p1" in templates
        assert all(not t.startswith("*") for t in templates)

    def test_concrete_flags(self):
        by_template = {t.template: t for t in self.index.paths_for("post", "p1")}
        assert by_template["posts/p1"].is_concrete
        assert not by_template["feed/{author_uid}/p1"].is_concrete

    def test_storage_templates(self):
        assert self.index.storage_for("user", "u1") == ["u1/"]
        assert self.index.storage_for("post", "p1") == ["{full_storage_uri}", "{thumb_storage_uri}"]

    def test_kinds(self):
        assert self.index.kinds == ["comment", "hashtag-index", "like", "post", "user"]

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError):
            self.index.paths_for("group", "g1")

    @pytest.mark.parametrize("bad_id", ["", "/", "*", "p1/*", "{id}"])
    def test_invalid_ids(self, bad_id):
        with pytest.raises(ConfigurationError):
            self.index.paths_for("post", bad_id)

    def test_composite_ids(self):
        templates = [str(t) for t in self.index.paths_for("comment", "p4/c1")]
        assert templates == ["comments/p4/c1", "commentFlags/p4/c1"]


class TestRuleParsing:
    def test_duplicate_rules_rejected(self):
        rule = {"kind": "like", "paths": ["likes/{id}"]}
        with pytest.raises(ConfigurationError):
            PathIndex([rule, rule])

    @pytest.mark.parametrize("raw", [
        {"paths": ["a/{id}"]},
        {"kind": "x", "paths": []},
        {"kind": "x", "paths": ["a/{id}"], "colour": "red"},
        {"kind": "x", "paths": ["a/*"]},
        {"kind": "x", "paths": [{"path": "a/*", "where": "uid"}]},
        {"kind": "x", "paths": [{"path": "a/*/*/*", "where": "uid", "equals": "{id}"}]},
        {"kind": "x", "paths": [{"path": "a/*/b/*", "where": "uid", "equals": "{id}"}]},
        {"kind": "x", "paths": ["a/{other}/{id}"]},
        {"kind": "x", "paths": [{"path": "a/{id}", "where": "uid", "equals": "{id}"}]},
        {"kind": "x", "bind": {"o": "owner"}, "paths": [{"path": "a/*", "where": "uid", "equals": "{o}"}]},
        {"kind": "x", "bind": {"t": {"field": "text", "extract": "nope"}}, "paths": ["a/{t}"]},
        {"kind": "x", "paths": ["a/{id}"], "storage": ["{missing}"]},
    ])
    def test_malformed_rules(self, raw):
        with pytest.raises(ConfigurationError):
            parse_rule(raw)

    def test_bindings_parsed(self):
        rule = parse_rule({
            "kind": "post",
            "bind": {"owner": "author/uid", "tag": {"field": "text", "extract": "hashtags"}},
            "paths": ["people/{owner}/posts/{id}", "hashtags/{tag}/{id}"],
        })
        assert rule.binding_names == frozenset({"owner", "tag"})
        assert rule.event == "delete"

    def test_new_relationship_without_code_change(self):
        index = PathIndex([{"kind": "group", "paths": ["groups/{id}", "groupMembers/{id}"]}])
        assert [str(t) for t in index.paths_for("group", "g1")] == ["groups/g1", "groupMembers/g1"]

    def test_load_rules_from_file(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([{"kind": "like", "paths": ["likes/{id}"]}]))
        assert PathIndex(load_rules(str(path))).kinds == ["like"]

    def test_load_rules_needs_a_list(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps({"kind": "like"}))
        with pytest.raises(ConfigurationError):
            load_rules(str(path))
