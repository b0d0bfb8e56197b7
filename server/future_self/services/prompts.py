"""Prompt construction for the image-to-video provider."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .generation_tasks import LifestyleParameters

PRESENT_MODE = "present"
FUTURE_MODE = "future"

UV_EXPOSURE_LEVELS = {
    1: "Indoor lifestyle / sunscreen daily",
    2: "Moderate outdoor activity",
    3: "Outdoor work or no UV protection",
}

BODY_COMPOSITION_LEVELS = {
    1: "BMI 18-21 / muscular",
    2: "BMI 22-24 / standard",
    3: "BMI 25+ / overweight or muscle loss",
}

SLEEP_STRESS_LEVELS = {
    1: "Sleep 7h+, low stress",
    2: "Sleep 5-6h, moderate stress",
    3: "Sleep <4h, high stress",
}

# Pose grid used by the nine-tile page variant.
POSES = (
    "facing the camera with a warm smile",
    "turning the head slightly to the left",
    "turning the head slightly to the right",
    "looking up thoughtfully",
    "looking down with a gentle smile",
    "laughing naturally",
    "nodding slowly",
    "resting the chin on one hand",
    "in a three-quarter profile gazing into the distance",
)

_OUTPUT_FLAGS = "--ratio adaptive --dur 5"

_PRESENT_TEMPLATE = """Generate a photorealistic image-to-video of the person as they are now. No aging or rejuvenation effects. Only add subtle natural movements.

Movement Style:
- The person opens eyes and looks gently at the camera with a warm smile
- Subtle head movement and natural breathing
- No changes to skin, wrinkles, or facial features

Output Style:
- Photorealistic, maintain all facial identity and proportions exactly as in the image
- Neutral lighting, professional studio composition

{flags}"""

_FUTURE_TEMPLATE = """Generate a photorealistic image-to-video of the same person 25 years older. Apply natural aging effects such as wrinkles, skin tone change, and facial volume shift, based on the following quantified lifestyle and health factors.

Lifestyle Aging Factors (3-level scale):
- UV Exposure: Level {uv} ({uv_desc})
- Body Composition (BMI/Fat): Level {body} ({body_desc})
- Sleep & Stress Balance: Level {sleep} ({sleep_desc})

Weighting:
- UV exposure: 3
- Body composition: 2
- Sleep & stress: 1

Output Style:
- Photorealistic, natural aging only
- Maintain all facial identity and proportions
- {movement}
- Neutral lighting, professional studio composition
- Output: 25 years later portrait video

{flags}"""

_DEFAULT_MOVEMENT = "The person opens eyes and looks gently at the camera with a warm smile"


def build_prompt(parameters: LifestyleParameters, mode: Optional[str] = None) -> str:
    """Render the provider prompt for a set of lifestyle levels.

    ``mode`` is either a timeline period (``present`` / ``future``) or a
    free-form pose description; anything other than ``present`` renders the
    aged variant, with the pose used as the movement cue.
    """

    normalized = (mode or FUTURE_MODE).strip()
    if normalized.lower() == PRESENT_MODE:
        return _PRESENT_TEMPLATE.format(flags=_OUTPUT_FLAGS)

    movement = _DEFAULT_MOVEMENT
    if normalized.lower() != FUTURE_MODE:
        movement = f"The person is shown {normalized}"

    return _FUTURE_TEMPLATE.format(
        uv=parameters.uv_exposure,
        uv_desc=UV_EXPOSURE_LEVELS[parameters.uv_exposure],
        body=parameters.body_composition,
        body_desc=BODY_COMPOSITION_LEVELS[parameters.body_composition],
        sleep=parameters.sleep_stress,
        sleep_desc=SLEEP_STRESS_LEVELS[parameters.sleep_stress],
        movement=movement,
        flags=_OUTPUT_FLAGS,
    )
