"""Client personas offered to the structure stage.

The model picks exactly one of these labels as `client_type`.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ClientArchetype:
    """A client persona with the training methods that suit it.

    Attributes:
        type: Persona label, as returned in `client_type`
        description: Short profile
        training_methods: Preferred training methods
        why_it_fits: Why those methods suit the persona
    """

    type: str
    description: str
    training_methods: tuple[str, ...]
    why_it_fits: str


CLIENT_ARCHETYPES: tuple[ClientArchetype, ...] = (
    ClientArchetype(
        type="The Rebuilder",
        description="40+, post-injury, cautious",
        training_methods=(
            "Rehabilitation-Based Functional Training",
            "Low-Impact Strength Circuits",
            "Stability & Mobility Progressions (FRC-inspired)",
        ),
        why_it_fits=(
            "Rebuilders need controlled intensity and tissue remodeling and do best with measurable "
            "progress without setbacks. These methods rebuild confidence and function."
        ),
    ),
    ClientArchetype(
        type="The Serial Athlete",
        description="Lifelong competitor",
        training_methods=(
            "Concurrent Training (Strength + Endurance)",
            "Undulating Periodization",
            "Performance-Based Conditioning (HIIT/Tempo Runs)",
        ),
        why_it_fits=(
            "Variety and performance benchmarks keep them stimulated. Undulating loads prevent burnout "
            "while concurrent training supports hybrid goals."
        ),
    ),
    ClientArchetype(
        type="The Midlife Transformer",
        description="Career-driven, seeking vitality",
        training_methods=(
            "Linear Progression Strength Training",
            "Metabolic Conditioning (MetCon)",
            "Habit-Based Lifestyle Integration",
        ),
        why_it_fits=(
            "Linear strength work builds tangible results and MetCons keep engagement high. "
            "Habit integration sustains the change."
        ),
    ),
    ClientArchetype(
        type="The Golden Grinder",
        description="60+, longevity-focused",
        training_methods=(
            "Functional Strength Training",
            "Balance & Neuromotor Drills",
            "Zone 2 Cardio Conditioning",
        ),
        why_it_fits=(
            "Functional patterns improve independence and balance work reduces fall risk. "
            "Zone 2 supports heart health and recovery."
        ),
    ),
    ClientArchetype(
        type="The Functionalist",
        description="Movement-minded, practical strength",
        training_methods=(
            "Movement Pattern Periodization",
            "Kettlebell & TRX Integration",
            "Hybrid Mobility Circuits",
        ),
        why_it_fits=(
            "They want training that feels like real life. Compound and asymmetrical loads reinforce "
            "control and joint resilience."
        ),
    ),
    ClientArchetype(
        type="The Transformation Seeker",
        description="Short-term goal, high emotion",
        training_methods=(
            "Body Recomposition Circuits",
            "Linear Strength + HIIT Split",
            "Macro-Driven Program Integration",
        ),
        why_it_fits=(
            "Needs fast results with visible payoff. These methods pair calorie-burning structure "
            "with sustainable strength outcomes."
        ),
    ),
    ClientArchetype(
        type="The Maintenance Pro",
        description="Advanced, consistent, data-driven",
        training_methods=(
            "Autoregulated Hypertrophy (RIR-based)",
            "Block Periodization",
            "Athlete Monitoring Systems (InBody, HRV, etc.)",
        ),
        why_it_fits=(
            "Already efficient, so the focus is fine-tuning. Block periodization keeps novelty and "
            "RIR-based training keeps precision without overtraining."
        ),
    ),
    ClientArchetype(
        type="The Overwhelmed Beginner",
        description="Inexperienced, anxious",
        training_methods=(
            "Foundational Movement Training",
            "Circuit-Based Full Body Workouts",
            "Progressive Habit Building",
        ),
        why_it_fits="Simple, clear and repeatable. Builds confidence and comfort in the gym environment.",
    ),
    ClientArchetype(
        type="The Burnout Comeback",
        description="Ex-athlete, rediscovering joy",
        training_methods=(
            "Autoregulatory Strength Training",
            "Play-Based Conditioning (sleds, med balls)",
            "Mindful Mobility & Breathwork",
        ),
        why_it_fits=(
            "Needs to rekindle enjoyment while avoiding all-or-nothing intensity. Blends creativity "
            "with low-pressure structure."
        ),
    ),
    ClientArchetype(
        type="The Data-Driven Devotee",
        description="Analytical, optimization-focused",
        training_methods=(
            "Autoregulated Progressive Overload",
            "Concurrent Training with Measurable Metrics",
            "Biofeedback-Integrated Programming (HRV, sleep, strain)",
        ),
        why_it_fits=(
            "They want systems. Real-time data creates buy-in and accountability, and precision keeps "
            "them engaged."
        ),
    ),
)


def get_archetype(client_type: str) -> ClientArchetype | None:
    """Look up a persona by label (case-insensitive, "The " prefix optional)."""
    wanted = client_type.strip().lower().removeprefix("the ").strip()
    for archetype in CLIENT_ARCHETYPES:
        if archetype.type.lower().removeprefix("the ") == wanted:
            return archetype
    return None


def format_archetypes() -> str:
    """Render every persona as a prompt section."""
    blocks = [
        "\n".join([
            f"**{archetype.type}**",
            f"Description: {archetype.description}",
            f"Training Methods: {', '.join(archetype.training_methods)}",
            f"Why It Fits: {archetype.why_it_fits}",
        ])
        for archetype in CLIENT_ARCHETYPES
    ]
    return "\n\n".join(blocks)
