from __future__ import annotations

from mealbot.core.events import AnswerButton, DeleteMessage, EditMessage, OpenPoll, ScopeKey, SendPrompt
from mealbot.core.text import t

SCOPE = ScopeKey(10, 1)
GROUP = -100


def _seed(deps, n: int) -> None:
    for i in range(n):
        deps.store.create(f"Meal {i}", rating=3)


def _meal_buttons(chat, action) -> list[str]:
    return [d for d in chat.button_data(action) if d.startswith("plan:show:")]


def test_plan_proposal_reroll_and_confirm(chat, deps) -> None:
    _seed(deps, 6)

    (prompt,) = chat.send("command", text="/plan 3")
    assert isinstance(prompt, SendPrompt)
    assert prompt.text == t("plan.title", count=3)
    first = deps.registry.get(SCOPE).draft["selection"]
    assert len(set(first)) == 3
    assert len(_meal_buttons(chat, prompt)) == 3
    assert {"plan:reroll:", "plan:ok:", "plan:nav:cancel"} <= set(chat.button_data(prompt))

    (edit,) = chat.send("button", data="plan:reroll:")
    assert isinstance(edit, EditMessage)
    second = deps.registry.get(SCOPE).draft["selection"]
    assert not set(first) & set(second)

    meal_id = _meal_buttons(chat, edit)[0].rsplit(":", 1)[1]
    (card,) = chat.send("button", data=f"plan:show:{meal_id}")
    assert card.role == "keyboard"
    assert card.text.startswith(deps.store.get_by_id(meal_id).name.upper())

    actions = chat.send("button", data="plan:ok:")
    final = actions[0]
    assert final.session_id is None
    assert final.text.startswith("Plan:\n1. ")
    for name in second:
        assert name in final.text
    assert len([a for a in actions if isinstance(a, DeleteMessage)]) == 2
    assert deps.registry.get(SCOPE) is None


def test_detail_cards_replace_each_other(chat, deps) -> None:
    _seed(deps, 3)
    (prompt,) = chat.send("command", text="/plan 2")
    first_id, second_id = (d.rsplit(":", 1)[1] for d in _meal_buttons(chat, prompt))

    chat.send("button", data=f"plan:show:{first_id}")
    shown = deps.tracker.get(deps.registry.get(SCOPE).id, "keyboard")

    (edit,) = chat.send("button", data=f"plan:show:{second_id}")
    assert isinstance(edit, EditMessage)
    assert edit.message_id == shown.message_id

    (delete,) = chat.send("button", data="plan:hide:")
    assert delete == DeleteMessage(chat_id=10, message_id=shown.message_id)


def test_plan_defaults_and_truncates(chat, deps, settings) -> None:
    _seed(deps, 2)
    (prompt,) = chat.send("command", text="/plan")
    assert prompt.text.startswith(t("plan.title", count=settings.default_plan_size))
    assert t("plan.truncated", available=2) in prompt.text
    assert len(_meal_buttons(chat, prompt)) == 2


def test_plan_with_nothing_saved(chat, deps) -> None:
    actions = chat.send("command", text="/plan 3")
    assert chat.texts(actions) == [t("plan.nothing")]
    assert deps.registry.get(SCOPE) is None


def test_plan_rejects_bad_sizes(chat, deps) -> None:
    _seed(deps, 2)
    (msg,) = chat.send("command", text="/plan zero")
    assert "whole number" in msg.text
    (msg,) = chat.send("command", text="/plan -1")
    assert "at least 1" in msg.text
    assert deps.registry.get(SCOPE) is None


def test_cancel_plan(chat, deps) -> None:
    _seed(deps, 2)
    chat.send("command", text="/plan 1")
    actions = chat.send("command", text="/cancel")
    assert t("common.cancelled") in chat.texts(actions)
    assert any(isinstance(a, DeleteMessage) for a in actions)
    assert deps.registry.get(SCOPE) is None


def test_free_text_is_ignored_while_planning(chat, deps) -> None:
    _seed(deps, 2)
    chat.send("command", text="/plan 1")
    assert chat.send("text", text="hello") == []
    assert deps.registry.get(SCOPE).step == "proposed"


def _labels(action) -> list[str]:
    return [b.text for row in action.buttons for b in row]


def test_vote_button_only_in_groups(chat, deps) -> None:
    _seed(deps, 3)
    (prompt,) = chat.send("command", text="/plan 2")
    assert "plan:vote:" not in chat.button_data(prompt)


def test_group_vote_is_reposted_and_cleaned_up(chat, deps) -> None:
    _seed(deps, 4)
    scope = ScopeKey(GROUP, 1)
    actions = chat.send("command", text="/plan 3", chat=GROUP, group=True)
    (prompt,) = [a for a in actions if isinstance(a, SendPrompt)]
    assert t("plan.vote_btn") in _labels(prompt)

    poll, edit = chat.send("button", data="plan:vote:", chat=GROUP, group=True)
    assert isinstance(poll, OpenPoll)
    assert poll.poll_id is None
    assert poll.multiple_answers
    assert poll.role == "vote"
    assert set(poll.options) == set(deps.registry.get(scope).draft["selection"])
    assert isinstance(edit, EditMessage)
    assert t("plan.clear_votes_btn") in _labels(edit)

    session = deps.registry.get(scope)
    first = deps.tracker.get(session.id, "vote")
    # Clearing re-posts the poll with no votes.
    cleared, reposted = chat.send("button", data="plan:vote:", chat=GROUP, group=True)
    assert cleared == DeleteMessage(chat_id=GROUP, message_id=first.message_id)
    assert isinstance(reposted, OpenPoll)
    second = deps.tracker.get(session.id, "vote")
    assert second.message_id != first.message_id

    actions = chat.send("button", data="plan:nav:cancel", chat=GROUP, group=True)
    deleted = {a.message_id for a in actions if isinstance(a, DeleteMessage)}
    assert second.message_id in deleted
    assert deps.registry.get(scope) is None
    assert deps.tracker.refs(session.id) == {}


def test_reroll_drops_the_stale_vote(chat, deps) -> None:
    _seed(deps, 6)
    scope = ScopeKey(GROUP, 1)
    chat.send("command", text="/plan 2", chat=GROUP, group=True)
    chat.send("button", data="plan:vote:", chat=GROUP, group=True)
    session = deps.registry.get(scope)
    vote = deps.tracker.get(session.id, "vote")

    actions = chat.send("button", data="plan:reroll:", chat=GROUP, group=True)
    assert DeleteMessage(chat_id=GROUP, message_id=vote.message_id) in actions
    assert deps.tracker.get(session.id, "vote") is None
    (edit,) = [a for a in actions if isinstance(a, EditMessage)]
    assert t("plan.vote_btn") in _labels(edit)


def test_vote_needs_two_meals(chat, deps) -> None:
    _seed(deps, 1)
    chat.send("command", text="/plan 1", chat=GROUP, group=True)
    (answer,) = chat.send("button", data="plan:vote:", chat=GROUP, group=True)
    assert answer == AnswerButton(t("plan.vote_too_few"), alert=True)
