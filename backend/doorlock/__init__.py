"""Smart door lock backend: device pairing, session sync, and mobile API."""
