"""Ideal rope (gamma = 0): the oscillation never dies out."""

SCRIPT = {
    "label": "Undamped rope",
    "inputs": {
        "total_height":       70.0,
        "jumper_mass":        70.0,
        "rope_length":        35.0,
        "spring_constant":   140.0,
        "damping":             0.0,   # every rebound reaches the same depth
        "duration":           30.0,
        "animation_speed_ms": 20.0,
    },
    "autostart": True,
}
