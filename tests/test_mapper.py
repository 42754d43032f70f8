"""Tests for graph to engine document translation."""

import pytest

from flowsync.core.mapper import assign_node_names, map_graph, to_engine_document, validate_document
from flowsync.models.core import GraphEdge, GraphNode
from flowsync.models.node_kinds import NOOP_TYPE


def node(node_id, kind="set", label=None, **kwargs):
    return GraphNode(id=node_id, kind=kind, label=label, **kwargs)


def edge(edge_id, source, target, source_handle=None, target_handle=None):
    return GraphEdge(
        id=edge_id,
        source=source,
        target=target,
        source_handle=source_handle,
        target_handle=target_handle,
    )


def connections_of(document):
    return {
        source: [[(c.node, c.index) for c in port] for port in outputs["main"]]
        for source, outputs in document.connections.items()
    }


class TestBasicMapping:
    """Nodes, names and the simplest connections."""

    def test_two_node_chain(self):
        document = to_engine_document(
            "Chain",
            [node("1", label="A"), node("2", label="B")],
            [edge("e1", "1", "2")],
        )

        payload = document.to_payload()
        assert payload["connections"] == {
            "A": {"main": [[{"node": "B", "type": "main", "index": 0}]]}
        }
        assert [n["name"] for n in payload["nodes"]] == ["A", "B"]

    def test_mapping_is_deterministic(self, sample_graph):
        nodes, edges = sample_graph
        first = to_engine_document("Orders", nodes, edges).to_payload()
        second = to_engine_document("Orders", nodes, edges).to_payload()
        assert first == second

    def test_node_fields(self):
        document = to_engine_document(
            "Fields",
            [node("n1", kind="http_request", label="  Fetch  ", position={"x": 10, "y": 20},
                  disabled=True, continue_on_fail=True)],
            [],
        )

        engine_node = document.to_payload()["nodes"][0]
        assert engine_node["id"] == "n1"
        assert engine_node["name"] == "Fetch"
        assert engine_node["type"] == "n8n-nodes-base.httpRequest"
        assert engine_node["typeVersion"] == 4
        assert engine_node["position"] == [10.0, 20.0]
        assert engine_node["disabled"] is True
        assert engine_node["continueOnFail"] is True
        assert engine_node["maxTries"] == 3

    def test_label_falls_back_to_node_id(self):
        document = to_engine_document("Ids", [node("abc"), node("def", label="   ")], [])
        assert document.node_names() == ["abc", "def"]

    def test_document_settings(self):
        payload = to_engine_document("Settings", [node("1")], []).to_payload()
        assert payload["active"] is False
        assert payload["staticData"] == {}
        assert payload["settings"]["executionOrder"] == "v1"
        assert payload["settings"]["saveManualExecutions"] is True
        assert payload["settings"]["executionTimeout"] == -1

    def test_editor_native_node_shape(self):
        raw_nodes = [
            {"id": "1", "type": "webhook", "position": {"x": 0, "y": 0},
             "data": {"label": "Hook", "config": {"path": "incoming", "method": "get"}}},
            {"id": "2", "type": "email", "data": {"label": "Mail", "config": {"to": "a@example.com"}}},
        ]
        raw_edges = [{"id": "e", "source": "1", "target": "2", "sourceHandle": None}]

        document = to_engine_document("Native", raw_nodes, raw_edges)

        webhook, email = document.nodes
        assert webhook.name == "Hook"
        assert webhook.parameters["path"] == "incoming"
        assert webhook.parameters["httpMethod"] == "GET"
        assert email.parameters["toEmail"] == "a@example.com"
        assert connections_of(document) == {"Hook": [[("Mail", 0)]]}


class TestNameCollisions:
    """Engine node names are unique and connections follow the renamed nodes."""

    def test_duplicate_labels_get_suffixes(self):
        names = assign_node_names([node("1", label="Step"), node("2", label="Step"), node("3", label="Step")])
        assert names == {"1": "Step", "2": "Step 1", "3": "Step 2"}

    def test_suffix_skips_labels_present_in_graph(self):
        nodes = [node("1", label="Step"), node("2", label="Step"), node("3", label="Step 1")]
        names = assign_node_names(nodes)
        assert names == {"1": "Step", "2": "Step 2", "3": "Step 1"}
        assert len(set(names.values())) == 3

    def test_connections_use_deduplicated_names(self):
        document = to_engine_document(
            "Dupes",
            [node("1", label="X"), node("2", label="X"), node("3", label="X")],
            [edge("e1", "1", "2"), edge("e2", "2", "3")],
        )

        assert connections_of(document) == {
            "X": [[("X 1", 0)]],
            "X 1": [[("X 2", 0)]],
        }
        assert validate_document(document) == []

    def test_label_equal_to_other_node_id(self):
        names = assign_node_names([node("b", label="a"), node("a")])
        assert names == {"b": "a", "a": "a 1"}


class TestDefects:
    """Malformed graphs are repaired and reported, never rejected."""

    def test_dangling_edges_are_dropped(self):
        result = map_graph(
            "Dangling",
            [node("1", label="A"), node("2", label="B")],
            [edge("good", "1", "2"), edge("bad-target", "1", "ghost"), edge("bad-source", "ghost", "2")],
        )

        assert connections_of(result.document) == {"A": [[("B", 0)]]}
        assert sorted(d.context["edge_id"] for d in result.defects) == ["bad-source", "bad-target"]
        assert validate_document(result.document) == []

    def test_duplicate_node_id_is_dropped(self):
        result = map_graph("Dup ids", [node("1", label="A"), node("1", label="B")], [])
        assert result.document.node_names() == ["A"]
        assert len(result.defects) == 1
        assert result.defects[0].context["node_id"] == "1"

    def test_unknown_kind_maps_to_noop_with_config_passed_through(self):
        result = map_graph("Unknown", [node("1", kind="quantum_teleport", config={"qubits": 3})], [])

        engine_node = result.document.nodes[0]
        assert engine_node.type == NOOP_TYPE
        assert engine_node.parameters == {"qubits": 3}
        assert not result.is_clean

    def test_invalid_config_falls_back_to_defaults(self):
        result = map_graph("Bad config", [node("1", kind="http_request", config={"timeout": "soon"})], [])

        params = result.document.nodes[0].parameters
        assert params["options"]["timeout"] == 10000
        assert params["method"] == "GET"
        assert any("Invalid config" in d.message for d in result.defects)

    def test_clean_graph_has_no_defects(self, sample_graph):
        nodes, edges = sample_graph
        assert map_graph("Orders", nodes, edges).is_clean


class TestPorts:
    """Branching kinds route edges to the output selected by the handle."""

    def test_conditional_true_and_false(self):
        document = to_engine_document(
            "Branch",
            [node("c", kind="conditional", label="C"), node("t", label="T"), node("f", label="F")],
            [edge("e1", "c", "f", source_handle="false"), edge("e2", "c", "t", source_handle="true")],
        )
        assert connections_of(document) == {"C": [[("T", 0)], [("F", 0)]]}

    def test_false_branch_only_keeps_dense_ports(self):
        document = to_engine_document(
            "Sparse",
            [node("c", kind="if", label="C"), node("f", label="F")],
            [edge("e1", "c", "f", source_handle="false")],
        )
        assert connections_of(document) == {"C": [[], [("F", 0)]]}

    def test_filter_ports(self):
        document = to_engine_document(
            "Filter",
            [node("f", kind="filter", label="F"), node("k", label="K"), node("d", label="D")],
            [edge("e1", "f", "k", source_handle="kept"), edge("e2", "f", "d", source_handle="discarded")],
        )
        assert connections_of(document) == {"F": [[("K", 0)], [("D", 0)]]}

    def test_switch_ports(self):
        document = to_engine_document(
            "Switch",
            [
                node("s", kind="switch", label="S", config={"rules": [{"value": "a"}, {"value": "b"}, {"value": "c"}]}),
                node("a", label="A"),
                node("b", label="B"),
            ],
            [edge("e1", "s", "a", source_handle="output2"), edge("e2", "s", "b", source_handle="0")],
        )
        assert connections_of(document) == {"S": [[("B", 0)], [], [("A", 0)]]}

    @pytest.mark.parametrize("config", [
        {"rules": [{"value": "a"}]},
        {"rules": [{"value": "a"}], "fallbackOutput": 3000000},
    ])
    def test_out_of_range_switch_handle_goes_to_port_zero(self, config):
        result = map_graph(
            "Switch",
            [node("s", kind="switch", label="S", config=config), node("a", label="A")],
            [edge("e1", "s", "a", source_handle="output3000000")],
        )

        assert connections_of(result.document) == {"S": [[("A", 0)]]}
        assert len(result.defects) == 1
        assert result.defects[0].context["edge_id"] == "e1"

    def test_switch_fallback_output_opens_a_port(self):
        result = map_graph(
            "Switch",
            [
                node("s", kind="switch", label="S", config={"rules": [{"value": "a"}], "fallbackOutput": 1}),
                node("a", label="A"),
            ],
            [edge("e1", "s", "a", source_handle="output1")],
        )

        assert connections_of(result.document) == {"S": [[], [("A", 0)]]}
        assert result.is_clean

    def test_merge_inputs(self):
        document = to_engine_document(
            "Merge",
            [node("a", label="A"), node("b", label="B"), node("m", kind="merge", label="M")],
            [edge("e1", "a", "m", target_handle="input0"), edge("e2", "b", "m", target_handle="input1")],
        )
        assert connections_of(document) == {"A": [[("M", 0)]], "B": [[("M", 1)]]}

    def test_merge_input_numbering_is_zero_based(self):
        handles = ["0", "1", "input-0", "input_1"]
        result = map_graph(
            "Merge",
            [node(f"s{i}", label=f"S{i}") for i in range(len(handles))] + [node("m", kind="merge", label="M")],
            [edge(f"e{i}", f"s{i}", "m", target_handle=h) for i, h in enumerate(handles)],
        )

        assert [ports[0][0][1] for ports in connections_of(result.document).values()] == [0, 1, 0, 1]
        assert result.is_clean

    def test_merge_input_past_last_is_unrecognised(self):
        result = map_graph(
            "Merge",
            [node("a", label="A"), node("m", kind="merge", label="M")],
            [edge("e1", "a", "m", target_handle="input2")],
        )

        assert connections_of(result.document) == {"A": [[("M", 0)]]}
        assert result.defects[0].context["node_id"] == "m"

    def test_unknown_handle_defaults_to_port_zero(self):
        result = map_graph(
            "Odd handle",
            [node("c", kind="conditional", label="C"), node("x", label="X")],
            [edge("e1", "c", "x", source_handle="maybe")],
        )
        assert connections_of(result.document) == {"C": [[("X", 0)]]}
        assert result.defects[0].context["edge_id"] == "e1"

    def test_single_output_kinds_ignore_handles(self):
        result = map_graph(
            "Handles",
            [node("a", kind="http_request", label="A"), node("b", label="B")],
            [edge("e1", "a", "b", source_handle="source-right")],
        )
        assert connections_of(result.document) == {"A": [[("B", 0)]]}
        assert result.is_clean

    def test_duplicate_connections_emitted_once(self):
        document = to_engine_document(
            "Twice",
            [node("a", label="A"), node("b", label="B")],
            [edge("e1", "a", "b"), edge("e2", "a", "b")],
        )
        assert connections_of(document) == {"A": [[("B", 0)]]}

    def test_sources_follow_node_order(self):
        document = to_engine_document(
            "Order",
            [node("1", label="First"), node("2", label="Second"), node("3", label="Third")],
            [edge("e1", "2", "3"), edge("e2", "1", "3"), edge("e3", "1", "2")],
        )
        assert list(document.connections) == ["First", "Second"]
        assert connections_of(document)["First"] == [[("Third", 0), ("Second", 0)]]


class TestParameters:
    """Per-kind parameter shapes."""

    def test_http_request_parameters(self):
        document = to_engine_document("Http", [node("1", kind="http_request", config={
            "url": "https://example.com",
            "method": "post",
            "headers": {"X-Token": "abc"},
            "body": {"a": 1},
        })], [])

        params = document.nodes[0].parameters
        assert params["url"] == "https://example.com"
        assert params["method"] == "POST"
        assert params["sendHeaders"] is True
        assert params["headerParameters"]["parameters"] == [{"name": "X-Token", "value": "abc"}]
        assert params["sendBody"] is True
        assert params["jsonBody"] == '{"a": 1}'

    def test_transform_accepts_expression(self):
        document = to_engine_document("Code", [node("1", kind="transform", config={"expression": "return [];"})], [])
        assert document.nodes[0].type == "n8n-nodes-base.code"
        assert document.nodes[0].parameters["jsCode"] == "return [];"

    def test_set_fields_have_stable_ids(self):
        config = {"fields": [{"name": "a", "value": 1, "type": "number"}, {"name": "b", "value": "x"}]}
        first = to_engine_document("Set", [node("1", kind="set", config=config)], [])
        second = to_engine_document("Set", [node("1", kind="set", config=config)], [])

        assignments = first.nodes[0].parameters["assignments"]["assignments"]
        assert [a["id"] for a in assignments] == ["field-0", "field-1"]
        assert first.to_payload() == second.to_payload()

    def test_email_required_keys_present_by_default(self):
        params = to_engine_document("Mail", [node("1", kind="email")], []).nodes[0].parameters
        for key in ("fromEmail", "toEmail", "subject", "message", "emailType"):
            assert key in params

    def test_schedule_trigger(self):
        document = to_engine_document("Cron", [node("1", kind="trigger_schedule",
                                                    config={"cronExpression": "*/5 * * * *"})], [])
        rule = document.nodes[0].parameters["rule"]["interval"][0]
        assert rule == {"field": "cronExpression", "expression": "*/5 * * * *"}
