"""Preset Habits - Built-in habit catalogue and difficulty rewards."""

from typing import Optional

from .models import Difficulty


XP_TIERS: dict[Difficulty, int] = {
    Difficulty.EASY: 25,
    Difficulty.MEDIUM: 50,
    Difficulty.HARD: 100,
    Difficulty.EPIC: 200,
}

PRESET_HABITS: list[dict] = [
    {"name": "Exercise", "description": "30 minutes of physical activity", "difficulty": Difficulty.HARD},
    {"name": "Meditate", "description": "10 minutes of mindfulness meditation", "difficulty": Difficulty.MEDIUM},
    {"name": "Read", "description": "Read for at least 20 minutes", "difficulty": Difficulty.MEDIUM},
    {"name": "Hydrate", "description": "Drink 8 glasses of water", "difficulty": Difficulty.EASY},
    {"name": "Journal", "description": "Write in your journal", "difficulty": Difficulty.MEDIUM},
    {"name": "Stretch", "description": "10 minutes of stretching", "difficulty": Difficulty.EASY},
    {"name": "Meal Prep", "description": "Prepare a healthy meal", "difficulty": Difficulty.HARD},
    {"name": "Deep Work", "description": "2 hours of focused, uninterrupted work", "difficulty": Difficulty.EPIC},
    {"name": "Learn", "description": "Learn something new for 30 minutes", "difficulty": Difficulty.HARD},
    {"name": "No Social Media", "description": "Avoid social media for the entire day", "difficulty": Difficulty.EPIC},
    {"name": "Sleep", "description": "Get 7-8 hours of quality sleep", "difficulty": Difficulty.MEDIUM},
    {"name": "Walk", "description": "Take a 20-minute walk", "difficulty": Difficulty.EASY},
    {"name": "Gratitude", "description": "Write down 3 things you are grateful for", "difficulty": Difficulty.EASY},
    {"name": "Plan Tomorrow", "description": "Plan your tasks for the next day", "difficulty": Difficulty.MEDIUM},
    {"name": "Clean/Organize", "description": "Spend 15 minutes cleaning or organizing", "difficulty": Difficulty.MEDIUM},
]


def reward_for_difficulty(difficulty: Optional[Difficulty]) -> int:
    """XP reward for a difficulty tier (0 when no tier is set)."""
    if difficulty is None:
        return 0
    return XP_TIERS[difficulty]


def list_presets() -> list[dict]:
    """Preset habits with their XP rewards, ready for JSON output."""
    return [
        {
            "name": preset["name"],
            "description": preset["description"],
            "difficulty": preset["difficulty"].value,
            "xp_reward": reward_for_difficulty(preset["difficulty"]),
        }
        for preset in PRESET_HABITS
    ]
