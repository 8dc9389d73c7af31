"""Modal screens: confirmations, prompts, pickers, forms, login and checkout."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Container
from textual.events import Key
from textual.reactive import reactive
from textual.screen import ModalScreen
from textual.widgets import Static

from pickup.checkout import CheckoutForm, earliest_pickup_slot
from pickup.models import Menu, MenuOption, PaymentMethod
from pickup.rendering import format_menu_label, format_money

MODAL_CSS = """
{name} {{
    align: center middle;
    background: $background 60%;
}}

.dialog {{
    width: 64;
    height: auto;
    border: round $secondary;
    background: $panel;
    padding: 1 2;
}}

.dialog-title {{
    text-style: bold;
    margin-bottom: 1;
    color: white;
}}

.dialog-body {{
    color: white;
    margin-bottom: 1;
}}

.dialog-error {{
    color: #ffb3b3;
    margin-bottom: 1;
}}

.dialog-help {{
    color: #dddddd;
}}
"""


class ConfirmModal(ModalScreen[bool]):
    """Yes/no prompt for destructive actions."""

    BINDINGS = [
        ("y", "answer(True)", "Yes"),
        ("n", "answer(False)", "No"),
        ("escape", "answer(False)", "No"),
    ]

    CSS = MODAL_CSS.format(name="ConfirmModal")

    def __init__(self, message: str) -> None:
        super().__init__()
        self.message = message

    def compose(self) -> ComposeResult:
        with Container(classes="dialog"):
            yield Static("Please confirm", classes="dialog-title")
            yield Static(self.message, classes="dialog-body")
            yield Static("Y confirm, N / Esc cancel", classes="dialog-help")

    def action_answer(self, value: bool) -> None:
        self.dismiss(value)


class PromptModal(ModalScreen[str | None]):
    """Prompt for one line of text (a reason) or digits (estimated minutes)."""

    CSS = MODAL_CSS.format(name="PromptModal")

    def __init__(self, title: str, prompt: str, *, digits_only: bool = False, max_length: int = 200) -> None:
        super().__init__()
        self.title_text = title
        self.prompt = prompt
        self.digits_only = digits_only
        self.max_length = max_length
        self.value = ""
        self.error = ""

    def compose(self) -> ComposeResult:
        with Container(classes="dialog"):
            yield Static(self.title_text, classes="dialog-title")
            yield Static(self.prompt, classes="dialog-body")
            yield Static(id="prompt-value", classes="dialog-body")
            yield Static(id="prompt-error", classes="dialog-error")
            yield Static("Enter confirm. Backspace delete. Esc cancel.", classes="dialog-help")

    def on_mount(self) -> None:
        self._refresh_content()

    def on_key(self, event: Key) -> None:
        if event.key == "escape":
            self.dismiss(None)
            event.stop()
            return

        if event.key == "enter":
            self._confirm()
            event.stop()
            return

        if event.key == "backspace":
            self.value = self.value[:-1]
            self.error = ""
            self._refresh_content()
            event.stop()
            return

        if event.is_printable and event.character:
            if self.digits_only and not event.character.isdigit():
                event.stop()
                return
            if len(self.value) < self.max_length:
                self.value += event.character
            self.error = ""
            self._refresh_content()
            event.stop()

    def _confirm(self) -> None:
        if not self.value.strip():
            self.error = "A value is required."
            self._refresh_content()
            return
        self.dismiss(self.value.strip())

    def _refresh_content(self) -> None:
        self.query_one("#prompt-value", Static).update(f"> {self.value}|")
        self.query_one("#prompt-error", Static).update(self.error)


class OptionsModal(ModalScreen[list[MenuOption] | None]):
    """Toggle a menu's options before adding it to the cart."""

    BINDINGS = [
        ("escape", "cancel", "Cancel"),
        ("j", "move_cursor(1)", "Next"),
        ("k", "move_cursor(-1)", "Previous"),
        ("up", "move_cursor(-1)", "Previous"),
        ("down", "move_cursor(1)", "Next"),
        ("space", "toggle_current", "Toggle"),
        ("enter", "confirm", "Add to cart"),
    ]

    CSS = MODAL_CSS.format(name="OptionsModal")

    cursor_index = reactive(0)

    def __init__(self, menu: Menu) -> None:
        super().__init__()
        self.menu = menu
        self.selected: set[str] = set()

    def compose(self) -> ComposeResult:
        with Container(classes="dialog"):
            yield Static("Options", classes="dialog-title")
            yield Static(id="options-body", classes="dialog-body")
            yield Static("J/K move, Space toggle, Enter add to cart, Esc cancel", classes="dialog-help")

    def on_mount(self) -> None:
        self._refresh_content()

    def action_cancel(self) -> None:
        self.dismiss(None)

    def action_move_cursor(self, delta: int) -> None:
        if not self.menu.options:
            return
        self.cursor_index = (self.cursor_index + delta) % len(self.menu.options)
        self._refresh_content()

    def action_toggle_current(self) -> None:
        if not self.menu.options:
            return
        option_id = self.menu.options[self.cursor_index].id
        if option_id in self.selected:
            self.selected.remove(option_id)
        else:
            self.selected.add(option_id)
        self._refresh_content()

    def action_confirm(self) -> None:
        self.dismiss([opt for opt in self.menu.options if opt.id in self.selected])

    def _refresh_content(self) -> None:
        content = Text(style="white")
        content.append_text(format_menu_label(self.menu))
        content.append("\n")
        for idx, option in enumerate(self.menu.options):
            pointer = "➤ " if idx == self.cursor_index else "  "
            checked = "[x]" if option.id in self.selected else "[ ]"
            style = "bold white" if option.id in self.selected else "white"
            content.append(f"\n{pointer}{checked} {option.name} +{format_money(option.price)}", style=style)
        self.query_one("#options-body", Static).update(content)


class LoginModal(ModalScreen[tuple[str, str] | None]):
    """Username/password entry; Tab switches fields."""

    CSS = MODAL_CSS.format(name="LoginModal")

    def __init__(self, error: str = "") -> None:
        super().__init__()
        self.username = ""
        self.password = ""
        self.field = "username"
        self.error = error

    def compose(self) -> ComposeResult:
        with Container(classes="dialog"):
            yield Static("Log in", classes="dialog-title")
            yield Static(id="login-body", classes="dialog-body")
            yield Static(id="login-error", classes="dialog-error")
            yield Static("Tab switch field, Enter log in, Esc cancel", classes="dialog-help")

    def on_mount(self) -> None:
        self._refresh_content()

    def on_key(self, event: Key) -> None:
        event.stop()
        if event.key == "escape":
            self.dismiss(None)
            return
        if event.key == "tab":
            self.field = "password" if self.field == "username" else "username"
        elif event.key == "enter":
            if not self.username or not self.password:
                self.error = "Username and password are required."
            else:
                self.dismiss((self.username, self.password))
                return
        elif event.key == "backspace":
            setattr(self, self.field, getattr(self, self.field)[:-1])
        elif event.is_printable and event.character:
            setattr(self, self.field, getattr(self, self.field) + event.character)
        self._refresh_content()

    def _refresh_content(self) -> None:
        content = Text()
        for name, shown in (("username", self.username), ("password", "*" * len(self.password))):
            pointer = "➤ " if self.field == name else "  "
            content.append(f"{pointer}{name.title()}: {shown}\n")
        self.query_one("#login-body", Static).update(content)
        self.query_one("#login-error", Static).update(self.error)


_PAYMENT_METHOD_LABELS = {
    PaymentMethod.CREDIT_CARD: "Credit card",
    PaymentMethod.DEBIT_CARD: "Debit card",
    PaymentMethod.BANK_TRANSFER: "Bank transfer",
}


class CheckoutModal(ModalScreen[CheckoutForm | None]):
    """Checkout form: pickup time, disposables, request text and payment method.

    The pickup time starts at the earliest allowed slot and moves in 10 minute steps.
    """

    CSS = MODAL_CSS.format(name="CheckoutModal")

    FIELDS = ("pickup", "disposables", "request", "payment")

    def __init__(self, total: int, error: str = "") -> None:
        super().__init__()
        self.total = total
        self.pickup_time: datetime = earliest_pickup_slot()
        self.need_disposables = False
        self.request = ""
        self.payment_method = PaymentMethod.CREDIT_CARD
        self.field_index = 0
        self.error = error

    def compose(self) -> ComposeResult:
        with Container(classes="dialog"):
            yield Static("Checkout", classes="dialog-title")
            yield Static(id="checkout-body", classes="dialog-body")
            yield Static(id="checkout-error", classes="dialog-error")
            yield Static(
                "Tab next field, +/- pickup time, Space toggle/cycle, Enter place order, Esc back",
                classes="dialog-help",
            )

    def on_mount(self) -> None:
        self._refresh_content()

    def on_key(self, event: Key) -> None:
        event.stop()
        current = self.FIELDS[self.field_index]
        if event.key == "escape":
            self.dismiss(None)
            return
        if event.key == "enter":
            self.dismiss(
                CheckoutForm(
                    pickup_time=self.pickup_time,
                    need_disposables=self.need_disposables,
                    request=self.request,
                    payment_method=self.payment_method,
                )
            )
            return
        if event.key == "tab":
            self.field_index = (self.field_index + 1) % len(self.FIELDS)
        elif current == "pickup" and event.character in {"+", "-"}:
            step = timedelta(minutes=10 if event.character == "+" else -10)
            # The floor moves with the clock while the form is open.
            self.pickup_time = max(self.pickup_time + step, earliest_pickup_slot())
        elif current == "disposables" and event.key == "space":
            self.need_disposables = not self.need_disposables
        elif current == "payment" and event.key == "space":
            methods = list(PaymentMethod)
            self.payment_method = methods[(methods.index(self.payment_method) + 1) % len(methods)]
        elif current == "request":
            if event.key == "backspace":
                self.request = self.request[:-1]
            elif event.is_printable and event.character and len(self.request) < 500:
                self.request += event.character
        self._refresh_content()

    def _refresh_content(self) -> None:
        rows = {
            "pickup": f"Pickup time: {self.pickup_time:%Y-%m-%d %H:%M}",
            "disposables": f"Disposables: {'[x]' if self.need_disposables else '[ ]'} cutlery, napkins",
            "request": f"Request: {self.request}",
            "payment": f"Payment: {_PAYMENT_METHOD_LABELS[self.payment_method]}",
        }
        content = Text()
        for idx, name in enumerate(self.FIELDS):
            pointer = "➤ " if idx == self.field_index else "  "
            content.append(f"{pointer}{rows[name]}\n")
        content.append(f"\nTotal: {format_money(self.total)}", style="bold")
        self.query_one("#checkout-body", Static).update(content)
        self.query_one("#checkout-error", Static).update(self.error)


@dataclass(frozen=True)
class FormField:
    name: str
    label: str
    value: str = ""
    secret: bool = False
    digits_only: bool = False
    max_length: int = 200


class FormModal(ModalScreen[dict[str, str] | None]):
    """Several single-line fields; Tab / Shift+Tab move between them."""

    CSS = MODAL_CSS.format(name="FormModal")

    def __init__(self, title: str, fields: list[FormField], error: str = "") -> None:
        super().__init__()
        self.title_text = title
        self.fields = fields
        self.values = {f.name: f.value for f in fields}
        self.field_index = 0
        self.error = error

    def compose(self) -> ComposeResult:
        with Container(classes="dialog"):
            yield Static(self.title_text, classes="dialog-title")
            yield Static(id="form-body", classes="dialog-body")
            yield Static(id="form-error", classes="dialog-error")
            yield Static("Tab next field, Enter save, Esc cancel", classes="dialog-help")

    def on_mount(self) -> None:
        self._refresh_content()

    def on_key(self, event: Key) -> None:
        event.stop()
        current = self.fields[self.field_index]
        if event.key == "escape":
            self.dismiss(None)
            return
        if event.key == "enter":
            self.dismiss(dict(self.values))
            return
        if event.key in {"tab", "down"}:
            self.field_index = (self.field_index + 1) % len(self.fields)
        elif event.key in {"shift+tab", "up"}:
            self.field_index = (self.field_index - 1) % len(self.fields)
        elif event.key == "backspace":
            self.values[current.name] = self.values[current.name][:-1]
        elif event.is_printable and event.character:
            if current.digits_only and not event.character.isdigit():
                return
            if len(self.values[current.name]) < current.max_length:
                self.values[current.name] += event.character
        self._refresh_content()

    def _refresh_content(self) -> None:
        content = Text()
        for idx, field in enumerate(self.fields):
            pointer = "➤ " if idx == self.field_index else "  "
            value = self.values[field.name]
            shown = "*" * len(value) if field.secret else value
            content.append(f"{pointer}{field.label}: {shown}\n")
        self.query_one("#form-body", Static).update(content)
        self.query_one("#form-error", Static).update(self.error)


class ChoiceModal(ModalScreen[int | None]):
    """Pick one entry from a short list; returns its index."""

    BINDINGS = [
        ("escape", "cancel", "Cancel"),
        ("j", "move_cursor(1)", "Next"),
        ("k", "move_cursor(-1)", "Previous"),
        ("up", "move_cursor(-1)", "Previous"),
        ("down", "move_cursor(1)", "Next"),
        ("enter", "confirm", "Choose"),
    ]

    CSS = MODAL_CSS.format(name="ChoiceModal")

    cursor_index = reactive(0)

    def __init__(self, title: str, choices: list[str], current: int = 0) -> None:
        super().__init__()
        self.title_text = title
        self.choices = choices
        self.set_reactive(ChoiceModal.cursor_index, current if 0 <= current < len(choices) else 0)

    def compose(self) -> ComposeResult:
        with Container(classes="dialog"):
            yield Static(self.title_text, classes="dialog-title")
            yield Static(id="choice-body", classes="dialog-body")
            yield Static("J/K move, Enter choose, Esc cancel", classes="dialog-help")

    def on_mount(self) -> None:
        self._refresh_content()

    def action_cancel(self) -> None:
        self.dismiss(None)

    def action_move_cursor(self, delta: int) -> None:
        self.cursor_index = (self.cursor_index + delta) % len(self.choices)
        self._refresh_content()

    def action_confirm(self) -> None:
        self.dismiss(self.cursor_index)

    def _refresh_content(self) -> None:
        content = Text()
        for idx, choice in enumerate(self.choices):
            pointer = "➤ " if idx == self.cursor_index else "  "
            content.append(f"{pointer}{choice}\n", style="bold white" if idx == self.cursor_index else "white")
        self.query_one("#choice-body", Static).update(content)
