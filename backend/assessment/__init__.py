"""Quiz assessment core: answer evaluation, scoring, attempt admission and field locks."""
