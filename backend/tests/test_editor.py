import pytest

from crm.segments.editor import (
    add_child,
    node_at,
    remove_child,
    set_operator,
    update_field,
)
from crm.segments.errors import (
    CannotRemoveRoot,
    InvalidOperator,
    InvalidRuleKey,
    InvalidRuleValue,
    NotAGroup,
    PathNotFound,
)
from crm.segments.rules import ConditionNode, GroupNode, dump_tree, empty_tree, load_tree


@pytest.fixture
def tree() -> GroupNode:
    return load_tree(
        {
            "operator": "AND",
            "children": [
                {"field": "lastActivity", "condition": "INACTIVE_DAYS", "value": 180},
                {
                    "operator": "OR",
                    "children": [
                        {"field": "totalSpend", "condition": "GT", "value": 5000},
                        {"field": "name", "condition": "CONTAINS", "value": "Inc"},
                    ],
                },
            ],
        }
    )


def test_node_at_walks_children(tree):
    assert node_at(tree, []) is tree
    assert node_at(tree, [1, 0]).field == "totalSpend"


@pytest.mark.parametrize("path", [[2], [1, 5], [0, 0], [-1]])
def test_node_at_rejects_bad_paths(tree, path):
    with pytest.raises(PathNotFound):
        node_at(tree, path)


def test_update_field_sets_only_the_target(tree):
    before = dump_tree(tree)

    result = update_field(tree, [1, 0], "value", 7500)

    assert node_at(result, [1, 0]).value == 7500
    assert dump_tree(tree) == before
    expected = dump_tree(tree)
    expected["children"][1]["children"][0]["value"] = 7500
    assert dump_tree(result) == expected


def test_update_field_on_group_operator(tree):
    result = update_field(tree, [1], "operator", "AND")
    assert node_at(result, [1]).operator == "AND"
    assert node_at(tree, [1]).operator == "OR"


def test_changing_field_keeps_condition_and_value(tree):
    result = update_field(tree, [1, 1], "field", "totalSpend")

    node = node_at(result, [1, 1])
    assert (node.field, node.condition, node.value) == ("totalSpend", "CONTAINS", "Inc")


@pytest.mark.parametrize(
    ("path", "key"),
    [
        ([0], "operator"),
        ([0], "children"),
        ([1], "field"),
        ([], "value"),
    ],
)
def test_update_field_rejects_keys_for_the_node_kind(tree, path, key):
    with pytest.raises(InvalidRuleKey):
        update_field(tree, path, key, "x")


def test_update_field_rejects_unknown_field_name(tree):
    with pytest.raises(InvalidRuleValue):
        update_field(tree, [0], "field", "shoeSize")


def test_update_field_rejects_missing_path(tree):
    with pytest.raises(PathNotFound):
        update_field(tree, [3], "value", 1)


def test_add_child_appends_draft_condition(tree):
    result = add_child(tree, [1])

    group = node_at(result, [1])
    assert len(group.children) == 3
    assert group.children[-1] == ConditionNode(field="", condition="", value="")
    assert len(node_at(tree, [1]).children) == 2


def test_add_child_appends_empty_group(tree):
    result = add_child(tree, [], as_group=True)

    assert len(result.children) == 3
    assert dump_tree(result.children[-1]) == {"operator": "AND", "children": []}


def test_add_child_to_condition_is_rejected(tree):
    with pytest.raises(NotAGroup):
        add_child(tree, [0])


def test_remove_child_drops_only_that_node(tree):
    result = remove_child(tree, [1, 0])

    assert len(node_at(result, [1]).children) == 1
    assert node_at(result, [1, 0]) == node_at(tree, [1, 1])
    assert node_at(result, [0]) == node_at(tree, [0])
    assert len(node_at(tree, [1]).children) == 2


def test_remove_child_rejects_root_and_missing_paths(tree):
    with pytest.raises(CannotRemoveRoot):
        remove_child(tree, [])
    with pytest.raises(PathNotFound):
        remove_child(tree, [1, 2])


def test_remove_then_add_yields_draft_not_the_removed_rule(tree):
    result = add_child(remove_child(tree, [1, 1]), [1])

    assert node_at(result, [1, 1]) == ConditionNode()


def test_set_operator(tree):
    result = set_operator(tree, [], "OR")
    assert result.operator == "OR"
    assert tree.operator == "AND"


@pytest.mark.parametrize("operator", ["XOR", "and", None])
def test_set_operator_rejects_unknown_values(tree, operator):
    with pytest.raises(InvalidOperator):
        set_operator(tree, [], operator)


def test_set_operator_on_condition_is_rejected(tree):
    with pytest.raises(InvalidRuleKey):
        set_operator(tree, [0], "OR")


def test_edits_share_no_mutable_nodes(tree):
    result = update_field(tree, [0], "value", 30)

    # Untouched subtrees are copies, not the same objects.
    assert result.children[1] == tree.children[1]
    assert result.children[1] is not tree.children[1]
    assert result.children[1].children is not tree.children[1].children

    result.children[1].children.append(ConditionNode())
    assert len(tree.children[1].children) == 2


def test_building_a_tree_from_empty():
    tree = add_child(empty_tree(), [])
    tree = update_field(tree, [0], "field", "totalVisits")
    tree = update_field(tree, [0], "condition", "GTE")
    tree = update_field(tree, [0], "value", 3)
    tree = add_child(tree, [], as_group=True)
    tree = set_operator(tree, [1], "OR")
    tree = add_child(tree, [1])

    assert dump_tree(tree) == {
        "operator": "AND",
        "children": [
            {"field": "totalVisits", "condition": "GTE", "value": 3},
            {"operator": "OR", "children": [{"field": "", "condition": "", "value": ""}]},
        ],
    }
