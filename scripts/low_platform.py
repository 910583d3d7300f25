"""Platform too low for the rope: the run stops at the total height."""

SCRIPT = {
    "label": "Low platform",
    "inputs": {
        "total_height":       50.0,
        "jumper_mass":        70.0,
        "rope_length":        35.0,   # max allowed is 0.8 × 50 = 40 m
        "spring_constant":   140.0,
        "damping":             0.1,
        "duration":           15.0,
        "animation_speed_ms": 50.0,
    },
    "autostart": True,
}
