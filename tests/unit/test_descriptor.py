# Copyright (c) Nex-AGI. All rights reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


"""Tests for model descriptors and the resource registry."""

from __future__ import annotations

from dataclasses import replace

import pytest

from nexrest.controllers import BatchVerb, ResourceHooks, ResourceRegistry
from nexrest.errors import ConfigError, MalformedRequestError
from nexrest.orm import RelationDescriptor, RelationKind
from tests.utils.blog import AUTHORS, COMMENTS, POSTS, PROFILES, build_registry


class TestModelDescriptor:
    """Tests for ModelDescriptor helpers."""

    def test_columns_come_from_the_table(self) -> None:
        assert POSTS.columns == ("id", "title", "status", "views", "author_id", "deleted_at")

    def test_fillable_excludes_key_and_soft_delete_column(self) -> None:
        assert POSTS.fillable_fields == ("title", "status", "views", "author_id")
        assert COMMENTS.fillable_fields == ("body", "post_id", "author_id", "approved")

    def test_explicit_fillable_wins(self) -> None:
        descriptor = replace(POSTS, fillable=("title",))
        assert descriptor.filter_payload({"title": "a", "views": 3, "id": 9}) == {"title": "a"}

    def test_coerce_key(self) -> None:
        assert POSTS.coerce_key("12") == 12
        assert POSTS.coerce_key(12) == 12

    @pytest.mark.parametrize("raw", ["abc", None, True, [1], {"id": 1}])
    def test_coerce_key_rejects_garbage(self, raw: object) -> None:
        with pytest.raises(MalformedRequestError):
            POSTS.coerce_key(raw)

    def test_unknown_relation(self) -> None:
        with pytest.raises(KeyError, match="not declared"):
            POSTS.relation("tags")

    def test_joining_fields(self) -> None:
        assert POSTS.relation("author").joining_fields(POSTS, AUTHORS) == ("author_id", "id")
        assert POSTS.relation("comments").joining_fields(POSTS, COMMENTS) == ("id", "post_id")
        assert AUTHORS.relation("profile").joining_fields(AUTHORS, PROFILES) == ("id", "author_id")
        assert AUTHORS.relation("profile").many is False
        assert AUTHORS.relation("posts").many is True


class TestResourceRegistry:
    """Tests for registration and startup validation."""

    def test_build_and_resolve(self) -> None:
        registry = build_registry()
        assert registry.finalized
        assert len(registry) == 4
        assert "posts" in registry
        hops = registry.resolve_path(AUTHORS, "posts.comments")
        assert [target.name for _, target in hops] == ["posts", "comments"]

    def test_duplicate_registration(self) -> None:
        registry = ResourceRegistry()
        registry.bind(AUTHORS)
        with pytest.raises(ConfigError, match="already registered"):
            registry.bind(AUTHORS)

    def test_bind_after_finalize(self) -> None:
        registry = build_registry()
        with pytest.raises(ConfigError, match="finalized"):
            registry.bind(replace(AUTHORS, name="writers"))

    def test_unknown_binding(self) -> None:
        with pytest.raises(ConfigError):
            build_registry().binding("tags")

    def test_default_hooks(self) -> None:
        binding = build_registry().binding("comments")
        assert binding.payload_model is None
        assert type(binding.hooks_for(BatchVerb.STORE)) is ResourceHooks

    @pytest.mark.parametrize(
        "descriptor, message",
        [
            (replace(COMMENTS, filterable=("nope",)), "Unknown filterable"),
            (replace(COMMENTS, key_name="uuid"), "Key column"),
            (replace(COMMENTS, soft_deletes=True), "Soft-delete column"),
            (replace(COMMENTS, includes=("post.tags",)), "does not resolve"),
            (replace(COMMENTS, aggregates=("likes",)), "Aggregate relation"),
            (
                replace(
                    COMMENTS,
                    relations={"post": RelationDescriptor("post", RelationKind.BELONGS_TO, "posts", foreign_key="x")},
                ),
                "Foreign key",
            ),
            (
                replace(
                    COMMENTS,
                    relations={"tags": RelationDescriptor("tags", RelationKind.HAS_MANY, "tags", foreign_key="x")},
                ),
                "unknown resource",
            ),
        ],
    )
    def test_finalize_rejects_inconsistent_descriptors(self, descriptor, message: str) -> None:
        registry = ResourceRegistry()
        for other in (AUTHORS, PROFILES, POSTS):
            registry.bind(other)
        registry.bind(descriptor)
        with pytest.raises(ConfigError, match=message):
            registry.finalize()
        assert not registry.finalized
