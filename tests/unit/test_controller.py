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


"""
Unit tests for the resource and relation controllers.

Every test runs against both query builders.
"""

import json

import pytest

from nexrest.config import PaginationConfig, RestConfig
from nexrest.controllers import (
    Ability,
    BatchVerb,
    FunctionHooks,
    HookResult,
    PolicyAuthorizer,
    RelationController,
    ResourceController,
    ResourceRequest,
)
from nexrest.errors import (
    AuthorizationError,
    FieldNotAllowedError,
    NestingLimitExceededError,
    PayloadValidationError,
    RelationNotAllowedError,
    ResourceNotFoundError,
    UnsupportedOperationError,
)
from tests.utils.blog import POSTS, build_registry


def ids(envelope) -> list[int]:
    return [item["id"] for item in envelope.data]


@pytest.fixture
def posts(builder, registry) -> ResourceController:
    return ResourceController(registry.binding("posts"), builder, registry)


def get(path: str = "/posts", **query) -> ResourceRequest:
    return ResourceRequest(path=path, query=query)


def post(body, path: str = "/posts", **query) -> ResourceRequest:
    return ResourceRequest(path=path, query=query, body=body)


# ============================================================================
# Reads
# ============================================================================


class TestIndex:
    """Test cases for listing resources."""

    def test_default_page(self, posts):
        envelope = posts.index(get())
        assert ids(envelope) == [1, 2, 3, 5]
        assert envelope.meta["total"] == 4
        assert envelope.meta["per_page"] == 15
        assert envelope.meta["path"] == "/posts"
        assert envelope.links["next"] is None

    def test_page_and_limit(self, posts):
        envelope = posts.index(get(page="2", limit="2"))
        assert ids(envelope) == [3, 5]
        assert envelope.meta["current_page"] == 2
        assert envelope.meta["last_page"] == 2
        assert envelope.links["prev"] == "/posts?page=1"

    def test_middle_page_of_many(self, builder, posts):
        for i in range(41):
            builder.insert(POSTS, {"title": f"bulk {i}"})
        envelope = posts.index(get(page="2"))
        assert ids(envelope) == list(range(17, 32))
        meta = {name: envelope.meta[name] for name in ("current_page", "from", "to", "total", "last_page", "per_page")}
        assert meta == {"current_page": 2, "from": 16, "to": 30, "total": 45, "last_page": 3, "per_page": 15}
        assert envelope.links["prev"] == "/posts?page=1"
        assert envelope.links["next"] == "/posts?page=3"

    def test_limit_zero_disables_pagination(self, posts):
        envelope = posts.index(get(limit="0"))
        assert ids(envelope) == [1, 2, 3, 5]
        assert envelope.meta is None
        assert envelope.links is None

    def test_pagination_disabled_globally(self, builder, registry):
        config = RestConfig(pagination=PaginationConfig(disabled=True))
        controller = ResourceController(registry.binding("posts"), builder, registry, config)
        assert controller.index(get(limit="2")).meta is None

    def test_query_string_filters_and_sort(self, posts):
        filters = json.dumps([{"field": "status", "operator": "=", "value": "published"}])
        assert ids(posts.index(get(filters=filters, sort="-views"))) == [3, 1]

    def test_search_term(self, posts):
        assert ids(posts.index(get(search="news"))) == [3]

    def test_trashed_scopes(self, posts):
        assert ids(posts.index(get(with_trashed="true"))) == [1, 2, 3, 4, 5]
        assert ids(posts.index(get(only_trashed="1"))) == [4]

    def test_include_and_count(self, posts):
        envelope = posts.index(get(include="author", with_count="comments"))
        first, *_, last = envelope.data
        assert first["author"]["name"] == "alice"
        assert first["comments_count"] == 2
        assert last["author"] is None
        assert "comments" not in first

    def test_sparse_fields(self, posts):
        envelope = posts.index(get(fields="title"))
        assert envelope.data[0] == {"id": 1, "title": "hello world"}

    def test_rejected_parameters(self, posts):
        with pytest.raises(FieldNotAllowedError):
            posts.index(get(sort="status"))
        with pytest.raises(RelationNotAllowedError):
            posts.index(get(include="profile"))
        with pytest.raises(NestingLimitExceededError):
            posts.index(get(include="comments.post.author"))

    def test_view_any_is_authorized(self, builder):
        registry = build_registry(authorizer=PolicyAuthorizer({Ability.VIEW_ANY: lambda user, name: user == "admin"}))
        controller = ResourceController(registry.binding("posts"), builder, registry)
        assert ids(controller.index(ResourceRequest(path="/posts", user="admin"))) == [1, 2, 3, 5]
        with pytest.raises(AuthorizationError):
            controller.index(get())


class TestSearch:
    """Test cases for body-driven search."""

    def test_body_filters_sort_and_includes(self, posts):
        body = {
            "filters": [
                {"field": "views", "operator": ">=", "value": 5},
                {"type": "or", "field": "author_id", "operator": "=", "value": None},
            ],
            "sort": [{"field": "views", "direction": "desc"}],
            "includes": [
                {"relation": "comments", "filters": [{"field": "approved", "operator": "=", "value": True}]},
            ],
        }
        envelope = posts.search(post(body, path="/posts/search"))
        assert ids(envelope) == [3, 1, 2, 5]
        assert [comment["id"] for comment in envelope.data[1]["comments"]] == [1]
        assert envelope.meta["path"] == "/posts/search"

    def test_search_object(self, posts):
        body = {"search": {"value": "NEWS", "case_sensitive": False}}
        assert ids(posts.search(post(body))) == [3]

    def test_relation_pagination(self, posts):
        body = {"includes": [{"relation": "comments", "limit": 1, "page": 2}]}
        envelope = posts.search(post(body))
        assert [comment["id"] for comment in envelope.data[0]["comments"]] == [2]
        assert envelope.data[2]["comments"] == []

    @pytest.mark.parametrize("sort, expected", [("comments_count", [2, 1]), ("-comments_count", [1, 2])])
    def test_included_relation_sorted_by_count(self, builder, registry, sort, expected):
        authors = ResourceController(registry.binding("authors"), builder, registry)
        body = {"filters": [{"field": "id", "value": 1}], "includes": [{"relation": "posts", "sort": sort}]}
        envelope = authors.search(post(body, path="/authors/search"))
        assert [item["id"] for item in envelope.data[0]["posts"]] == expected


class TestShow:
    """Test cases for fetching one resource."""

    def test_show(self, posts):
        envelope = posts.show(get("/posts/1", include="comments", with_count="comments"), "1")
        assert envelope.data["title"] == "hello world"
        assert envelope.data["comments_count"] == 2
        assert [comment["id"] for comment in envelope.data["comments"]] == [1, 2]
        assert envelope.meta is None

    def test_missing_and_trashed(self, posts):
        with pytest.raises(ResourceNotFoundError):
            posts.show(get(), 99)
        with pytest.raises(ResourceNotFoundError):
            posts.show(get(), 4)
        assert posts.show(get(with_trashed="1"), 4).data["id"] == 4

    def test_view_is_authorized_per_entity(self, builder):
        authorizer = PolicyAuthorizer({Ability.VIEW: lambda user, entity: entity.get("status") == "published"})
        registry = build_registry(authorizer=authorizer)
        controller = ResourceController(registry.binding("posts"), builder, registry)
        controller.show(get(), 1)
        with pytest.raises(AuthorizationError):
            controller.show(get(), 2)


# ============================================================================
# Writes
# ============================================================================


class TestMutations:
    """Test cases for single-entity mutations."""

    def test_store(self, posts):
        envelope = posts.store(post({"title": "fresh", "author_id": 2}, include="author"))
        assert envelope.data["id"] == 6
        assert envelope.data["status"] == "draft"
        assert envelope.data["author"]["name"] == "bob"

    def test_store_validation(self, posts):
        with pytest.raises(PayloadValidationError):
            posts.store(post({"title": ""}))

    def test_update(self, posts):
        envelope = posts.update(post({"views": 99}), "2")
        assert envelope.data["views"] == 99
        assert envelope.data["title"] == "second post"
        with pytest.raises(ResourceNotFoundError):
            posts.update(post({"views": 1}), 99)

    def test_destroy_and_restore(self, posts):
        assert posts.destroy(get(), 1).data["deleted_at"] is not None
        with pytest.raises(ResourceNotFoundError):
            posts.show(get(), 1)
        assert posts.restore(get(), 1).data["deleted_at"] is None
        assert posts.show(get(), 1).data["id"] == 1

    def test_restore_untrashed_is_not_found(self, posts):
        with pytest.raises(ResourceNotFoundError):
            posts.restore(get(), 2)

    def test_force_destroy(self, posts):
        posts.destroy(get(force="true"), 4)
        with pytest.raises(ResourceNotFoundError):
            posts.show(get(with_trashed="1"), 4)

    def test_hook_response_is_returned_as_is(self, builder):
        hooks = FunctionHooks(before_save=lambda hook_input: HookResult.respond({"queued": True}))
        registry = build_registry(hooks={BatchVerb.STORE: hooks})
        controller = ResourceController(registry.binding("posts"), builder, registry)
        assert controller.store(post({"title": "queued"})) == {"queued": True}


class TestBatchMutations:
    """Test cases for batch endpoints."""

    def test_batch_store(self, posts):
        envelope = posts.batch_store(post({"resources": [{"title": "a"}, {"title": "b"}]}))
        assert ids(envelope) == [6, 7]
        assert envelope.meta is None

    def test_batch_update(self, posts):
        envelope = posts.batch_update(post({"resources": {"1": {"status": "draft"}, "3": {"status": "draft"}}}))
        assert [item["status"] for item in envelope.data] == ["draft", "draft"]
        assert ids(posts.index(get(filters='[{"field": "status", "value": "draft"}]'))) == [1, 2, 3, 5]

    def test_batch_update_loads_requested_relations_only(self, builder, registry):
        def after_action(hook_input):
            if hook_input.entity.key == 1:
                hook_input.entity.relations["author"] = None
            return HookResult.proceed()

        registry = build_registry(hooks={BatchVerb.UPDATE: FunctionHooks(after_action=after_action)})
        controller = ResourceController(registry.binding("posts"), builder, registry)
        body = {"resources": {"1": {"views": 11}, "2": {"views": 6}}}
        first, second = controller.batch_update(post(body, path="/posts/batch", include="comments")).data
        assert [comment["id"] for comment in first["comments"]] == [1, 2]
        assert "author" not in first
        assert second["comments"] == []
        assert second["views"] == 6

    def test_batch_destroy_and_restore(self, posts):
        assert ids(posts.batch_destroy(post({"resources": [1, 2, 99]}))) == [1, 2]
        assert ids(posts.batch_restore(post({"resources": [1, 2, 4]}))) == [1, 2, 4]
        assert ids(posts.index(get())) == [1, 2, 3, 4, 5]


# ============================================================================
# Relations
# ============================================================================


class TestRelationController:
    """Test cases for controllers scoped to a parent entity."""

    def test_name(self, builder, registry):
        assert RelationController(registry.binding("posts"), "comments", builder, registry).name == "posts.comments"

    def test_has_many_index_is_scoped(self, builder, registry):
        comments = RelationController(registry.binding("posts"), "comments", builder, registry)
        assert ids(comments.for_parent("1").index(get("/posts/1/comments"))) == [1, 2]
        assert ids(comments.for_parent(2).index(get())) == []

    def test_has_many_store_forces_the_foreign_key(self, builder, registry):
        comments = RelationController(registry.binding("posts"), "comments", builder, registry)
        envelope = comments.for_parent(1).store(post({"body": "first!", "post_id": 3}))
        assert envelope.data["post_id"] == 1

    def test_foreign_rows_are_out_of_reach(self, builder, registry):
        comments = RelationController(registry.binding("posts"), "comments", builder, registry).for_parent(1)
        with pytest.raises(ResourceNotFoundError):
            comments.show(get(), 3)
        with pytest.raises(ResourceNotFoundError):
            comments.destroy(get(), 3)
        assert ids(comments.batch_destroy(post({"resources": [2, 3]}))) == [2]

    def test_missing_parent(self, builder, registry):
        comments = RelationController(registry.binding("posts"), "comments", builder, registry)
        with pytest.raises(ResourceNotFoundError) as exc_info:
            comments.for_parent(99)
        assert exc_info.value.resource == "posts"

    def test_has_many_respects_soft_deletes(self, builder, registry):
        author_posts = RelationController(registry.binding("authors"), "posts", builder, registry).for_parent(2)
        assert ids(author_posts.index(get())) == [3]
        assert ids(author_posts.index(get(with_trashed="1"))) == [3, 4]

    def test_belongs_to(self, builder, registry):
        author = RelationController(registry.binding("posts"), "author", builder, registry)
        assert ids(author.for_parent(3).index(get())) == [2]
        assert ids(author.for_parent(5).index(get())) == []
        with pytest.raises(UnsupportedOperationError):
            author.for_parent(1).store(post({"name": "dave"}))

    def test_unknown_relation(self, builder, registry):
        with pytest.raises(KeyError):
            RelationController(registry.binding("posts"), "tags", builder, registry)
