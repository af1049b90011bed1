from __future__ import annotations

from mealbot.core.events import AnswerButton, DeleteMessage, EditMessage, Outbox, Payload, ScopeKey, SendPrompt
from mealbot.core.text import t

SCOPE = ScopeKey(10, 1)


def test_step_by_step_creation(chat, deps) -> None:
    (prompt,) = chat.send("command", text="/newmeal")
    assert isinstance(prompt, SendPrompt)
    assert prompt.text == t("new.name")
    assert prompt.role == "prompt"
    prompt_id = deps.tracker.get(prompt.session_id, "prompt").message_id

    (edit,) = chat.send("text", text="Pasta")
    assert isinstance(edit, EditMessage)
    assert edit.message_id == prompt_id
    assert "new:rate:4" in chat.button_data(edit)

    (edit,) = chat.send("button", data="new:rate:4")
    assert edit.text == t("new.tags", card="PASTA\n⭐⭐⭐⭐")

    (edit,) = chat.send("text", text="spicy https://r.example")
    assert edit.text.endswith("Send a photo, or skip.")

    (edit,) = chat.send("photo", photo="file-1")
    assert "new:confirm:save" in chat.button_data(edit)

    actions = chat.send("button", data="new:confirm:save")
    saved, cleanup = actions
    assert isinstance(saved, SendPrompt)
    assert saved.session_id is None
    assert saved.photo_file_id == "file-1"
    assert saved.text.endswith("Saved!")
    assert cleanup == DeleteMessage(chat_id=10, message_id=prompt_id)

    meal = deps.store.get("pasta")
    assert meal.rating == 4.0
    assert meal.tags == ["spicy"]
    assert meal.references == ["https://r.example"]
    assert meal.photo_file_id == "file-1"
    assert deps.registry.get(SCOPE) is None


def test_wrong_input_keeps_the_step(chat, deps) -> None:
    chat.send("command", text="/newmeal Soup")
    assert deps.registry.get(SCOPE).step == "awaiting-rating"

    (edit,) = chat.send("text", text="delicious")
    assert edit.text == t("new.rating_retry", name="SOUP", max=5)
    assert deps.registry.get(SCOPE).step == "awaiting-rating"

    (edit,) = chat.send("photo", photo="file-1")
    assert deps.registry.get(SCOPE).step == "awaiting-rating"

    chat.send("text", text="3")
    assert deps.registry.get(SCOPE).step == "awaiting-tags"


def test_optional_steps_can_be_skipped(chat, deps) -> None:
    chat.send("command", text="/newmeal Soup")
    chat.send("button", data="new:rate:2")
    chat.send("button", data="new:nav:skip")
    assert deps.registry.get(SCOPE).step == "awaiting-photo"
    chat.send("button", data="new:nav:skip")
    assert deps.registry.get(SCOPE).step == "confirm"


def test_photo_instead_of_tags_skips_to_confirm(chat, deps) -> None:
    chat.send("command", text="/newmeal Soup")
    chat.send("button", data="new:rate:2")
    chat.send("photo", photo="file-9")
    session = deps.registry.get(SCOPE)
    assert session.step == "confirm"
    assert session.draft["photo_file_id"] == "file-9"


def test_existing_name_offers_overwrite(chat, deps) -> None:
    deps.store.create("Pasta", rating=1)
    chat.send("command", text="/newmeal")

    (edit,) = chat.send("text", text="pasta")
    assert edit.text == t("new.name_conflict", name="PASTA")
    assert "new:overwrite:" in chat.button_data(edit)
    assert deps.registry.get(SCOPE).step == "awaiting-name"

    chat.send("button", data="new:overwrite:")
    assert deps.registry.get(SCOPE).step == "awaiting-rating"
    chat.send("button", data="new:rate:5")
    chat.send("button", data="new:nav:skip")
    chat.send("button", data="new:nav:skip")
    chat.send("button", data="new:confirm:save")

    assert len(deps.store.list()) == 1
    assert deps.store.get("Pasta").rating == 5.0


def test_cancel_removes_prompts(chat, deps) -> None:
    chat.send("command", text="/newmeal", chat=-100, group=True)
    session = deps.registry.get(ScopeKey(-100, 1))
    refs = deps.tracker.refs(session.id)
    assert set(refs) == {"prompt", "echo"}

    actions = chat.send("button", data="new:nav:cancel", chat=-100, group=True)
    deleted = {a.message_id for a in actions if isinstance(a, DeleteMessage)}
    assert deleted == {ref.message_id for ref in refs.values()}
    assert t("common.cancelled") in chat.texts(actions)
    assert deps.registry.get(ScopeKey(-100, 1)) is None


def test_buttons_without_session_are_outdated(chat) -> None:
    (answer,) = chat.send("button", data="new:rate:3")
    assert answer == AnswerButton(t("common.expired"), alert=True)


def test_quick_create(chat, deps) -> None:
    (saved,) = chat.send("command", text="/new Soup, 4, hot quick, https://s.example")
    assert saved.text.endswith("Saved!")
    meal = deps.store.get("soup")
    assert meal.rating == 4.0
    assert meal.tags == ["hot", "quick"]
    assert meal.references == ["https://s.example"]
    assert deps.registry.get(SCOPE) is None


def test_quick_create_with_photo_caption(chat, deps) -> None:
    chat.send("photo", text="/new Cake, 5", photo="file-3")
    assert deps.store.get("cake").photo_file_id == "file-3"


def test_quick_create_missing_rating_opens_dialog(chat, deps) -> None:
    (prompt,) = chat.send("command", text="/new Soup, tasty")
    assert prompt.text == t("new.rating_retry", name="SOUP", max=5)
    session = deps.registry.get(SCOPE)
    assert session.step == "awaiting-rating"
    assert deps.store.get("soup") is None


def test_quick_create_conflict_asks_to_overwrite(chat, deps) -> None:
    deps.store.create("Soup", rating=1)
    (prompt,) = chat.send("command", text="/new soup, 2")
    assert "new:overwrite:" in chat.button_data(prompt)
    assert deps.registry.get(SCOPE).step == "confirm"

    chat.send("button", data="new:overwrite:")
    assert deps.store.get("Soup").rating == 2.0
    assert deps.registry.get(SCOPE) is None


def test_non_operators_cannot_create_in_groups(chat, deps) -> None:
    actions = chat.send("command", text="/new Soup, 4", user=2, chat=-100, group=True)
    assert chat.texts(actions) == [t("common.not_authorized")]
    assert deps.store.get("soup") is None


def test_quick_create_example_line(chat, deps) -> None:
    chat.send("command", text="/new Pasta, 4, italian quick")
    meal = deps.store.get("Pasta")
    assert meal.name == "Pasta"
    assert meal.rating == 4.0
    assert set(meal.tags) == {"italian", "quick"}
    assert deps.registry.get(SCOPE) is None


def test_overwrite_from_another_flow_is_not_accepted(chat, deps, router) -> None:
    deps.store.create("Pasta", rating=1)
    chat.send("command", text="/newmeal")
    chat.send("text", text="pasta")
    session = deps.registry.get(SCOPE)

    out = Outbox()
    router.creation.handle(session, "button", Payload(chat_id=10, user_id=1, data="plan:overwrite:"), out)
    session = deps.registry.get(SCOPE)
    assert session.step == "awaiting-name"
    assert not session.draft.get("overwrite")
