"""
History formatting for the generation contract.

Two strategies decide where the system instruction goes:

- inline: sent as the first requester turn, prefixed with a marker so the
  model reads it as an instruction rather than something the user said.
- structured: sent through the provider's dedicated instruction slot; the
  turn list then holds only the conversation itself.

Each strategy is an explicit role table, so formatting and parsing back are
table lookups in both directions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from ..exceptions import ValidationError
from ..llm.base import GenerationRequest, Turn, TurnRole
from ..history import Message, MessageRole

SYSTEM_MARKER = "System instruction: "


class FormattingStrategy(str, Enum):
    """Where the system instruction is placed."""
    INLINE = "inline"
    STRUCTURED = "structured"


@dataclass(frozen=True)
class RoleTable:
    """Role mapping for one strategy."""

    strategy: FormattingStrategy
    roles: dict[MessageRole, TurnRole]
    inline_system: bool

    def to_turn_role(self, role: MessageRole) -> TurnRole:
        try:
            return self.roles[role]
        except KeyError:
            raise ValidationError(
                f"Role '{role}' cannot be sent as a turn with the {self.strategy.value} strategy"
            ) from None

    def to_message_role(self, role: TurnRole) -> MessageRole:
        for message_role, turn_role in self.roles.items():
            if turn_role == role and message_role != MessageRole.SYSTEM:
                return message_role
        raise ValidationError(f"Unknown turn role '{role}'")


ROLE_TABLES: dict[FormattingStrategy, RoleTable] = {
    FormattingStrategy.INLINE: RoleTable(
        strategy=FormattingStrategy.INLINE,
        roles={
            MessageRole.SYSTEM: TurnRole.REQUESTER,
            MessageRole.USER: TurnRole.REQUESTER,
            MessageRole.ASSISTANT: TurnRole.RESPONDER,
        },
        inline_system=True,
    ),
    FormattingStrategy.STRUCTURED: RoleTable(
        strategy=FormattingStrategy.STRUCTURED,
        roles={
            MessageRole.USER: TurnRole.REQUESTER,
            MessageRole.ASSISTANT: TurnRole.RESPONDER,
        },
        inline_system=False,
    ),
}


class HistoryFormatter:
    """Translate session history into a GenerationRequest."""

    def __init__(
        self,
        strategy: FormattingStrategy | str = FormattingStrategy.INLINE,
        max_output_tokens: int = 1000,
    ):
        self.strategy = FormattingStrategy(strategy)
        self.table = ROLE_TABLES[self.strategy]
        self.max_output_tokens = max_output_tokens

    def format(self, history: Sequence[Message]) -> GenerationRequest:
        """Build the provider request, preserving message order exactly."""
        if not history:
            raise ValidationError("Cannot format an empty history")

        turns: list[Turn] = []
        system_instruction: str | None = None

        for index, message in enumerate(history):
            if message.is_system:
                if index != 0:
                    raise ValidationError("The system message must lead the history")
                if self.table.inline_system:
                    turns.append(Turn(
                        role=self.table.to_turn_role(message.role),
                        text=f"{SYSTEM_MARKER}{message.content}",
                    ))
                else:
                    system_instruction = message.content
                continue

            turns.append(Turn(
                role=self.table.to_turn_role(message.role),
                text=message.content,
            ))

        return GenerationRequest(
            turns=turns,
            system_instruction=system_instruction,
            max_output_tokens=self.max_output_tokens,
        )

    def parse(self, request: GenerationRequest) -> list[tuple[MessageRole, str]]:
        """Map a formatted request back to internal roles and contents."""
        parsed: list[tuple[MessageRole, str]] = []

        if request.system_instruction is not None:
            parsed.append((MessageRole.SYSTEM, request.system_instruction))

        for index, turn in enumerate(request.turns):
            if (
                self.table.inline_system
                and index == 0
                and turn.role == TurnRole.REQUESTER
                and turn.text.startswith(SYSTEM_MARKER)
            ):
                parsed.append((MessageRole.SYSTEM, turn.text[len(SYSTEM_MARKER):]))
                continue
            parsed.append((self.table.to_message_role(turn.role), turn.text))

        return parsed
