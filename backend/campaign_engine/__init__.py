"""Campaign follow-up sequencing and delivery tracking engine."""
