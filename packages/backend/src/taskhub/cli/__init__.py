"""Command-line interface (`taskhub`)."""
