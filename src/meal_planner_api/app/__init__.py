"""Domain layer: models, storage, completion client, pipeline stages."""
