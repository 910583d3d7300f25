"""Centro Ibó reference jump: 70 m platform, 35 m rope, light damping."""

SCRIPT = {
    "label": "Reference jump",
    "inputs": {
        "total_height":       70.0,
        "jumper_mass":        70.0,
        "rope_length":        35.0,
        "spring_constant":   140.0,
        "damping":             0.1,
        "duration":           15.0,
        "animation_speed_ms": 50.0,
    },
    "autostart": True,
}
