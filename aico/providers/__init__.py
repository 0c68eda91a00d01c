"""Provider drivers for model completion calls."""
