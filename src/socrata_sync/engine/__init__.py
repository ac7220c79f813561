"""Transfer engine: coercion, record transform, transcoding, resume and chunk orchestration."""
