from __future__ import annotations

import pytest

from practice_audit.facts import MethodFact, RouteFact
from practice_audit.php import ParseError
from practice_audit.source_parser import parse_source
from tests.helpers_project import (
    BILLING_CONTROLLER,
    BROKEN_RELATIONS_MODEL,
    BROKEN_SOURCE,
    GUARDED_MODEL,
    ISOLATED_TEST,
    POSTS_MIGRATION,
    REPORT_REPOSITORY,
    SHOW_VIEW,
    UNGUARDED_MODEL,
    UNISOLATED_TEST,
    WEB_ROUTES,
)


def test_parse_model_class_facts() -> None:
    [facts] = parse_source("app/Models/Post.php", UNGUARDED_MODEL)

    assert facts.kind == "class"
    assert facts.name == "Post"
    assert facts.line == 7
    assert facts.get("extends") == "Model"
    assert facts.get("has_fillable") is False
    assert facts.get("has_guarded") is False
    assert facts.get("methods") == (
        MethodFact(name="comments", line=9, relation="hasMany", returns_relation=True),
    )


def test_parse_relationship_methods_without_return() -> None:
    [facts] = parse_source("app/Models/Comment.php", BROKEN_RELATIONS_MODEL)

    assert facts.get("has_fillable") is True
    methods = {method.name: method for method in facts.get("methods")}
    assert methods["post"] == MethodFact("post", 11, relation="belongsTo")
    assert methods["author"] == MethodFact("author", 16, relation="belongsTo")
    assert methods["scopeRecent"].relation is None


def test_parse_relationship_returned_through_local_variable() -> None:
    source = (
        "<?php\n\nclass Author extends Model\n{\n    public function posts()\n    {\n"
        "        $relation = $this->hasMany(Post::class);\n\n"
        "        return $relation->latest();\n    }\n\n"
        "    public function drafts()\n    {\n"
        "        $relation = $this->hasMany(Post::class);\n\n"
        "        return $other;\n    }\n}\n"
    )

    [facts] = parse_source("app/Models/Author.php", source)

    assert facts.get("methods") == (
        MethodFact(name="posts", line=5, relation="hasMany", returns_relation=True),
        MethodFact(name="drafts", line=12, relation="hasMany", returns_relation=False),
    )


def test_parse_guarded_property() -> None:
    [facts] = parse_source("app/Models/Tag.php", GUARDED_MODEL)

    assert facts.get("has_guarded") is True
    assert facts.get("has_fillable") is False


def test_parse_controller_ignores_env_in_comments_and_strings() -> None:
    [facts] = parse_source("app/Http/Controllers/BillingController.php", BILLING_CONTROLLER)

    assert facts.name == "BillingController"
    assert facts.get("extends") == "Controller"
    assert facts.get("middleware_calls") == (9,)
    assert facts.get("env_calls") == (15,)
    assert facts.get("service_lookups") == (
        (14, "new PaymentGateway"),
        (16, "app(MailService::class)"),
    )


def test_parse_raw_queries_only_flags_interpolated_sql() -> None:
    [facts] = parse_source("app/Repositories/ReportRepository.php", REPORT_REPOSITORY)

    assert facts.get("raw_interpolations") == ((12, "DB::select"),)
    assert facts.get("extends") is None


def test_parse_routes_file() -> None:
    [facts] = parse_source("routes/web.php", WEB_ROUTES)

    assert facts.kind == "route-list"
    assert facts.name == "routes/web.php"
    assert facts.get("routes") == (
        RouteFact(line=6, verb="get", uri="/posts", named=True, closure=False),
        RouteFact(line=7, verb="post", uri="/posts", named=False, closure=False),
        RouteFact(line=8, verb="get", uri="/about", named=False, closure=True),
        RouteFact(line=12, verb="delete", uri="/posts/{post}", named=True, closure=False),
    )
    assert facts.get("env_calls") == ()


def test_parse_routes_reads_name_only_from_the_chain() -> None:
    source = (
        "<?php\n\n"
        "Route::get('/profile', function () {\n"
        "    return $user->name('x');\n"
        "});\n"
        "Route::get('/settings', function () {\n"
        "    return view('settings');\n"
        "})->name('settings');\n"
    )

    [facts] = parse_source("routes/web.php", source)

    assert facts.get("routes") == (
        RouteFact(line=3, verb="get", uri="/profile", named=False, closure=True),
        RouteFact(line=6, verb="get", uri="/settings", named=True, closure=True),
    )


def test_parse_anonymous_migration_with_empty_down() -> None:
    [facts] = parse_source(
        "database/migrations/2024_01_01_000000_create_posts_table.php", POSTS_MIGRATION
    )

    assert facts.kind == "migration"
    assert facts.name == "2024_01_01_000000_create_posts_table"
    assert facts.line == 7
    assert facts.get("has_up") is True
    assert facts.get("has_down") is True
    assert facts.get("down_empty") is True


def test_parse_migration_without_down() -> None:
    source = (
        "<?php\n\nclass CreateTagsTable extends Migration\n{\n"
        "    public function up()\n    {\n        Schema::create('tags');\n    }\n}\n"
    )
    [facts] = parse_source("database/migrations/create_tags_table.php", source)

    assert facts.name == "CreateTagsTable"
    assert facts.line == 3
    assert facts.get("has_down") is False


def test_parse_view_facts() -> None:
    [facts] = parse_source("resources/views/posts/show.blade.php", SHOW_VIEW)

    assert facts.kind == "view"
    assert facts.name == "posts.show"
    assert facts.get("raw_echoes") == ((2, "$post->body_html"),)
    assert facts.get("queries") == ((5, "Comment::where"),)
    assert facts.get("env_calls") == ()


def test_parse_view_rejects_unterminated_comment() -> None:
    with pytest.raises(ParseError, match="unterminated template comment"):
        parse_source("resources/views/broken.blade.php", "<p>\n{{-- open\n")


def test_parse_test_case_traits_and_database_calls() -> None:
    [unisolated] = parse_source("tests/Feature/PostTest.php", UNISOLATED_TEST)
    [isolated] = parse_source("tests/Feature/TagTest.php", ISOLATED_TEST)

    assert unisolated.line == 8
    assert unisolated.get("traits") == ()
    assert unisolated.get("database_calls") == (12, 13)
    assert isolated.get("traits") == ("RefreshDatabase",)


def test_config_files_yield_no_units() -> None:
    assert parse_source("config/services.php", "<?php return ['k' => env('K')];\n") == []


def test_parse_broken_source_raises() -> None:
    with pytest.raises(ParseError, match="unterminated string literal"):
        parse_source("app/Models/Broken.php", BROKEN_SOURCE)
