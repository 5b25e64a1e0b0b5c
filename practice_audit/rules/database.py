"""Database and ORM practice rules."""

from __future__ import annotations

from collections.abc import Iterator

from practice_audit.facts import FactSet
from practice_audit.rules.base import Match, Rule

MODEL_BASES = {"Model", "Authenticatable"}


def _unguarded_model(facts: FactSet) -> Iterator[Match]:
    if facts.get("extends") not in MODEL_BASES:
        return
    has_fillable = facts.get("has_fillable")
    has_guarded = facts.get("has_guarded")
    if has_fillable is None or has_guarded is None:
        return
    if not has_fillable and not has_guarded:
        yield Match(line=facts.line, subject=facts.name)


def _unreturned_relationships(facts: FactSet) -> Iterator[Match]:
    for method in facts.get("methods") or ():
        if method.relation and not method.returns_relation:
            yield Match(line=method.line, subject=method.name)


def _interpolated_raw_queries(facts: FactSet) -> Iterator[Match]:
    for line, call in facts.get("raw_interpolations") or ():
        yield Match(line=line, subject=call)


def _irreversible_migration(facts: FactSet) -> Iterator[Match]:
    has_up = facts.get("has_up")
    has_down = facts.get("has_down")
    if has_up is None or has_down is None:
        return
    if has_up and (not has_down or facts.get("down_empty", False)):
        yield Match(line=facts.line, subject=facts.name)


RULES = (
    Rule(
        rule_id="mass-assignment",
        title="Declare mass-assignable attributes on models",
        category="database",
        severity="warning",
        kinds=("class",),
        predicate=_unguarded_model,
        message="Model {subject} declares neither $fillable nor $guarded.",
        remediation=(
            "List assignable columns in protected $fillable = [...] "
            "(or protect columns with $guarded) before calling create() or fill()."
        ),
    ),
    Rule(
        rule_id="relationship-return",
        title="Return the relation from relationship methods",
        category="database",
        severity="error",
        kinds=("class",),
        predicate=_unreturned_relationships,
        message="Relationship method {subject}() in {name} does not return its relation.",
        remediation="Write the method as `return $this->hasMany(Comment::class);`.",
    ),
    Rule(
        rule_id="raw-query-interpolation",
        title="Bind parameters in raw queries",
        category="database",
        severity="error",
        kinds=("class",),
        predicate=_interpolated_raw_queries,
        message="{subject} in {name} interpolates variables into raw SQL.",
        remediation="Use placeholders and pass values as bindings: DB::select('... = ?', [$id]).",
    ),
    Rule(
        rule_id="reversible-migration",
        title="Make migrations reversible",
        category="database",
        severity="warning",
        kinds=("migration",),
        predicate=_irreversible_migration,
        message="Migration {subject} has no working down() method.",
        remediation="Implement down() so it undoes every change made in up().",
    ),
)
