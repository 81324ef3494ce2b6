from data_models.dbo_next_action import NextBestAction
from next_actions.delivery_actions import DELIVERY_ACTIONS
from next_actions.rules import RULE_NAMES
from next_actions.templates import DEFAULT_PLAYBOOK, PLAYBOOKS, build_next_action_template, suggested_actions


def test_every_rule_has_a_playbook():
    assert set(PLAYBOOKS) == set(RULE_NAMES)


def test_growth_template_offers_rule_keys_first():
    action = NextBestAction(title="Follow up on growth pipeline", created_by_rule="growth_overdue_followups")

    template = build_next_action_template(action)

    assert template.rule_key == "growth_overdue_followups"
    assert template.title == "Follow up on growth pipeline"
    assert template.checklist
    assert [s.action_key for s in template.suggested_actions] == [
        "growth_mark_replied",
        "growth_schedule_followup_3d",
        "mark_done",
        "snooze_1d",
    ]
    replied = template.suggested_actions[0]
    assert replied.label == "Mark replied"
    assert replied.confirm_text == DELIVERY_ACTIONS["growth_mark_replied"].confirm_text


def test_unknown_rule_falls_back_to_generic_playbook():
    template = build_next_action_template(NextBestAction(title="Legacy", created_by_rule="legacy_rule"))

    assert template.why == DEFAULT_PLAYBOOK.why
    assert [s.action_key for s in template.suggested_actions] == ["mark_done", "snooze_1d"]


def test_suggested_keys_are_all_registered():
    for rule in RULE_NAMES:
        for suggestion in suggested_actions(rule):
            assert suggestion.action_key in DELIVERY_ACTIONS
            assert suggestion.label
