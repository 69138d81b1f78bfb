from __future__ import annotations

from dataclasses import dataclass

from app.domain.errors import InvalidArgumentError


@dataclass(frozen=True)
class Level:
    id: int
    name: str
    points_required: int | None
    description: str = ""

    @property
    def is_max_marker(self) -> bool:
        return self.points_required is None


LEVELS: tuple[Level, ...] = (
    Level(1, "Bronce", 0, "Your journey starts here. Earn your first rewards as a beginner."),
    Level(2, "Plata", 100, "You are making progress. Keep going to reach greater heights."),
    Level(3, "Oro", 200, "Outstanding effort. You are a shining star on your path."),
    Level(4, "Platino", 300, "Impressive. You are among the best and ready for bigger challenges."),
    Level(5, "Esmeralda", 400, "You have reached an elite tier. Your achievements shine like an emerald."),
    Level(6, "Diamante", 500, "The pinnacle of success. Your effort has earned top recognition."),
    Level(7, "Maestro", 600, "You are a master of your field. Your dedication is admirable."),
    Level(8, "Leyenda", 700, "A living legend. Your legacy will endure."),
)

MAX_LEVEL = Level(0, "Max Level", None, "No further level to reach.")


@dataclass(frozen=True)
class Progression:
    current_level: Level
    next_level: Level
    current_xp: int

    def as_payload(self) -> dict[str, object]:
        return {
            "current_level": {
                "id": self.current_level.id,
                "name": self.current_level.name,
                "xp": self.current_level.points_required,
            },
            "next_level": {
                "id": self.next_level.id,
                "name": self.next_level.name,
                "xp": self.next_level.points_required,
                "is_max": self.next_level.is_max_marker,
            },
            "current_xp": self.current_xp,
        }


def level_for(xp_total: int) -> Level:
    if xp_total < 0:
        raise InvalidArgumentError("xp total must not be negative")
    reached = [level for level in LEVELS if level.points_required is not None and level.points_required <= xp_total]
    return reached[-1]


def next_level_after(level: Level) -> Level:
    for candidate in LEVELS:
        if candidate.id == level.id + 1:
            return candidate
    return MAX_LEVEL


def progression(xp_total: int) -> Progression:
    current = level_for(xp_total)
    return Progression(current_level=current, next_level=next_level_after(current), current_xp=xp_total)
