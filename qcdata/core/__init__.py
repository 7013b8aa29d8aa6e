"""Record model, validation, aggregation and configuration."""
