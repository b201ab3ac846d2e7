"""Generation context shared by every model call of one job."""

from dataclasses import dataclass
from datetime import UTC, date, datetime

from plangen.domain.models import BodyScan, Client, Questionnaire


@dataclass(frozen=True)
class GenerationContext:
    """Immutable inputs describing the client being planned for.

    Attributes:
        questionnaire: Intake questionnaire (structured or legacy format)
        client: Client record, used for age when `age` is not given
        body_scan: Latest body-composition scan, if any
        age: Client age in years; derived from the client's date of birth when None
    """

    questionnaire: Questionnaire
    client: Client | None = None
    body_scan: BodyScan | None = None
    age: int | None = None

    def resolved_age(self, today: date | None = None) -> int | None:
        if self.age is not None:
            return self.age
        if self.client is None:
            return None
        return self.client.age_on(today or datetime.now(UTC).date())
