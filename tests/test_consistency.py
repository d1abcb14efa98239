"""
Tests for contract matching and mismatch computation.
"""

import pytest

from blastradius.config import config_from_dict, get_default_config
from blastradius.consistency import (
    ConsistencyChecker, ContractFamily, MismatchKind, compute_mismatches, normalize_route_path, strip_optional,
    types_compatible
)
from blastradius.errors import DuplicateRouteError
from blastradius.graph_store import GraphStore
from blastradius.types import EntityKind

from helpers import entity, result, route, shaped_type


def snapshot_of(*entities):
    store = GraphStore()
    by_file = {}
    for e in entities:
        by_file.setdefault(e.file_path, []).append(e)
    store.merge_batch([result(path, items) for path, items in by_file.items()])
    return store.snapshot()


MAPPED = config_from_dict({"contracts": {"mappings": {"UserInput": "UpdateUserDTO"}}})


class TestRoutePaths:
    """Test route path normalization."""

    @pytest.mark.parametrize("path", [
        "/users/{id}",
        "/users/:id",
        "/users/<int:id>",
        "/users/[id]",
        "/users/${userId}",
        "/Users/{id}/",
        "//users//{id}?expand=true",
        "https://api.example.com/users/{id}",
    ])
    def test_parameter_styles_normalize_alike(self, path):
        assert normalize_route_path(path) == "/users/{}"

    def test_configured_prefix_is_stripped(self):
        assert normalize_route_path("/api/users", ["/api"]) == "/users"
        assert normalize_route_path("/apiary/users", ["/api"]) == "/apiary/users"
        assert normalize_route_path("/api", ["/api/"]) == "/"

    def test_root(self):
        assert normalize_route_path("") == "/"
        assert normalize_route_path("/") == "/"


class TestTypeEquivalence:
    """Test the configurable type-equivalence table."""

    def setup_method(self):
        self.config = get_default_config()

    def test_equivalent_groups(self):
        assert types_compatible("string", "String", self.config)
        assert types_compatible("number", "Integer", self.config)
        assert types_compatible("boolean", "bool", self.config)

    def test_incompatible_types(self):
        assert not types_compatible("string", "Integer", self.config)
        assert not types_compatible("UserRef", "Address", self.config)

    def test_optional_markers_are_ignored(self):
        assert strip_optional("string?") == "string"
        assert strip_optional("string | null") == "string"
        assert strip_optional("Optional[str]") == "str"
        assert types_compatible("string | undefined", "Optional[String]", self.config)

    def test_custom_table(self):
        config = config_from_dict({"type_equivalence": {"id": ["UUID", "string"]}})
        assert types_compatible("UUID", "string", config)
        assert not types_compatible("string", "String", config)


class TestShapeMismatches:
    """The round-trip and symmetry properties of shape diffs."""

    def setup_method(self):
        self.frontend = shaped_type("UserInput", [("name", "string"), ("email", "string")], "frontend")
        self.backend = shaped_type("UpdateUserDTO", [("name", "String"), ("email", "String")], "backend")

    def test_identical_shapes_have_no_mismatches(self):
        report = ConsistencyChecker(MAPPED).check(snapshot_of(self.frontend, self.backend))

        assert len(report.pairs) == 1
        pair = report.pairs[0]
        assert pair.family == ContractFamily.SHAPE
        assert pair.match_basis == "mapping"
        assert (pair.frontend, pair.backend) == (self.frontend.id, self.backend.id)
        assert pair.mismatches == ()
        assert report.findings == []

    def test_added_frontend_field_is_one_missing_field(self):
        frontend = shaped_type("UserInput", [("name", "string"), ("email", "string"), ("phone", "string", True)],
                               "frontend")

        report = ConsistencyChecker(MAPPED).check(snapshot_of(frontend, self.backend))

        mismatches = report.pairs[0].mismatches
        assert len(mismatches) == 1
        assert mismatches[0].kind == MismatchKind.MISSING_FIELD
        assert mismatches[0].field == "phone"
        assert mismatches[0].frontend_detail == "phone: string (required)"
        assert mismatches[0].backend_detail is None

    def test_backend_perspective_reports_extra_field(self):
        frontend = shaped_type("UserInput", [("name", "string"), ("email", "string"), ("phone", "string", True)],
                               "frontend")

        report = ConsistencyChecker(MAPPED).check(snapshot_of(frontend, self.backend), declared_side="backend")

        mismatches = report.pairs[0].mismatches
        assert [(m.kind, m.field) for m in mismatches] == [(MismatchKind.EXTRA_FIELD, "phone")]
        assert mismatches[0].frontend_detail == "phone: string (required)"

    def test_declared_side_from_config(self):
        config = config_from_dict({"contracts": {"mappings": {"UserInput": "UpdateUserDTO"},
                                                 "declared_side": "backend"}})
        backend = shaped_type("UpdateUserDTO", [("name", "String"), ("email", "String"), ("age", "int")], "backend")

        report = ConsistencyChecker(config).check(snapshot_of(self.frontend, backend))

        assert report.declared_side == "backend"
        assert [(m.kind, m.field) for m in report.pairs[0].mismatches] == [(MismatchKind.MISSING_FIELD, "age")]

    def test_type_and_validation_mismatches(self):
        backend = shaped_type("UpdateUserDTO", [("name", "Integer"), ("email", "String", False)], "backend")

        mismatches = compute_mismatches(self.frontend, backend, get_default_config())

        assert [(m.kind, m.field) for m in mismatches] == [
            (MismatchKind.TYPE_MISMATCH, "name"),
            (MismatchKind.VALIDATION_MISMATCH, "email"),
        ]
        assert mismatches[0].frontend_detail == "name: string (required)"
        assert mismatches[0].backend_detail == "name: Integer (required)"

    def test_different_names_are_never_guessed(self):
        report = ConsistencyChecker(get_default_config()).check(snapshot_of(self.frontend, self.backend))

        assert report.pairs == []
        assert [f.rule for f in report.findings] == ["OrphanContract", "OrphanContract"]
        assert {f.severity for f in report.findings} == {"info"}

    def test_naming_rules(self):
        config = config_from_dict({"contracts": {"naming_rules": {
            "frontend": {"strip_prefixes": ["I"]},
            "backend": {"strip_suffixes": ["DTO", "Request"]},
        }}})
        frontend = shaped_type("IUpdateUser", [("name", "string")], "frontend")
        backend = shaped_type("UpdateUserDTO", [("name", "str")], "backend")

        report = ConsistencyChecker(config).check(snapshot_of(frontend, backend))

        assert len(report.pairs) == 1
        assert report.pairs[0].key == "UpdateUser"
        assert report.pairs[0].match_basis == "convention"
        assert report.pairs[0].mismatches == ()

    def test_contract_name_metadata(self):
        frontend = shaped_type("ProfileForm", [("name", "string")], "frontend", contract_name="Profile")
        backend = shaped_type("Profile", [("name", "str")], "backend")

        report = ConsistencyChecker(get_default_config()).check(snapshot_of(frontend, backend))

        assert [(p.key, p.match_basis) for p in report.pairs] == [("Profile", "mapping")]

    def test_shared_layer_and_unshaped_types_are_ignored(self):
        shared = shaped_type("UserInput", [("name", "string")], "shared")
        report = ConsistencyChecker(MAPPED).check(snapshot_of(shared, self.backend))
        assert report.pairs == []
        assert [f.meta["side"] for f in report.findings] == ["backend"]


class TestRoutes:
    """Test route families, route mismatches and duplicates."""

    def setup_method(self):
        self.config = config_from_dict({"contracts": {"route_prefixes": ["/api"]}})

    def test_routes_pair_across_parameter_styles(self):
        frontend = route("updateUser", "/api/users/${id}", "put", "frontend", status_codes=[200, 404])
        backend = route("update_user", "/users/<int:id>", "PUT", "backend", status_codes=[200, 404, 422])

        report = ConsistencyChecker(self.config).check(snapshot_of(frontend, backend))

        assert len(report.pairs) == 1
        pair = report.pairs[0]
        assert pair.key == "PUT /users/{}"
        assert pair.match_basis == "route"
        assert pair.confidence == 1.0
        assert pair.mismatches == ()

    def test_unhandled_status_code(self):
        frontend = route("getUser", "/users/:id", "GET", "frontend", status_codes=[200, 410])
        backend = route("get_user", "/users/{id}", "GET", "backend", status_codes=[200, 404])

        report = ConsistencyChecker(self.config).check(snapshot_of(frontend, backend))

        mismatches = report.pairs[0].mismatches
        assert [m.kind for m in mismatches] == [MismatchKind.STATUS_CODE_MISMATCH]
        assert mismatches[0].frontend_detail == "handles 410"

    def test_status_codes_ignored_when_one_side_declares_none(self):
        frontend = route("getUser", "/users/:id", "GET", "frontend", status_codes=[200, 410])
        backend = route("get_user", "/users/{id}", "GET", "backend")

        report = ConsistencyChecker(self.config).check(snapshot_of(frontend, backend))

        assert report.pairs[0].mismatches == ()

    def test_method_difference_is_route_mismatch(self):
        frontend = route("updateUser", "/users/{id}", "PUT", "frontend")
        backend = route("update_user", "/users/{id}", "PATCH", "backend")

        report = ConsistencyChecker(self.config).check(snapshot_of(frontend, backend))

        assert report.findings == []
        pair = report.pairs[0]
        assert pair.match_basis == "route_path"
        assert pair.key == "/users/{}"
        assert [(m.kind, m.frontend_detail, m.backend_detail) for m in pair.mismatches] == [
            (MismatchKind.ROUTE_MISMATCH, "PUT", "PATCH"),
        ]

    def test_route_shapes_are_compared(self):
        frontend = route("create", "/users", "POST", "frontend", shape=[("name", "string"), ("age", "number")])
        backend = route("create", "/users", "POST", "backend", shape=[("name", "str")])

        report = ConsistencyChecker(self.config).check(snapshot_of(frontend, backend))

        assert [(m.kind, m.field) for m in report.pairs[0].mismatches] == [(MismatchKind.MISSING_FIELD, "age")]

    def test_duplicate_backend_routes_are_reported(self):
        frontend = route("getUser", "/users/{id}", "GET", "frontend")
        first = route("get_user", "/users/{id}", "GET", "backend", file="server/a.py")
        second = route("fetch_user", "/users/:uid", "GET", "backend", file="server/b.py")

        report = ConsistencyChecker(self.config).check(snapshot_of(frontend, first, second))

        assert report.pairs == []
        duplicates = report.findings_of("DuplicateRoute")
        assert len(duplicates) == 1
        assert duplicates[0].severity == "error"
        assert duplicates[0].meta["backend"] == sorted([first.id, second.id])

    def test_duplicate_backend_routes_raise_in_strict_mode(self):
        first = route("get_user", "/users/{id}", "GET", "backend", file="server/a.py")
        second = route("fetch_user", "/users/:uid", "GET", "backend", file="server/b.py")

        with pytest.raises(DuplicateRouteError) as exc:
            ConsistencyChecker(self.config, strict=True).check(snapshot_of(first, second))

        assert exc.value.key == "GET /users/{}"
        assert len(exc.value.entity_ids) == 2

    def test_several_frontend_callers_pair_with_one_backend(self):
        web = route("getUser", "/users/{id}", "GET", "frontend", file="web/a.ts")
        admin = route("loadUser", "/users/:id", "GET", "frontend", file="admin/b.ts")
        backend = route("get_user", "/users/{id}", "GET", "backend")

        report = ConsistencyChecker(self.config).check(snapshot_of(web, admin, backend))

        assert sorted(p.frontend for p in report.pairs) == sorted([web.id, admin.id])
        assert {p.backend for p in report.pairs} == {backend.id}
        assert report.pairs_for(backend.id) == report.pairs

    def test_orphan_route(self):
        internal = route("metrics", "/internal/metrics", "GET", "backend")

        report = ConsistencyChecker(self.config).check(snapshot_of(internal))

        assert report.pairs == []
        assert report.findings[0].rule == "OrphanContract"
        assert report.findings[0].entity_ids == (internal.id,)

    def test_route_without_path_is_reported(self):
        dynamic = entity("dispatch", EntityKind.API_ROUTE, "server/routes.py", layer="backend")
        shared = entity("helper", EntityKind.API_ROUTE, "lib/routes.py", layer="shared")

        report = ConsistencyChecker(self.config).check(snapshot_of(dynamic, shared))

        assert report.pairs == []
        unrouted = report.findings_of("UnroutedContract")
        assert [(f.entity_ids, f.severity, f.meta) for f in unrouted] == [
            ((dynamic.id,), "info", {"side": "backend"}),
        ]
        assert [f.rule for f in report.findings] == ["UnroutedContract"]
