"""Pure domain layer: values, policies, number formats, DTOs and time."""
