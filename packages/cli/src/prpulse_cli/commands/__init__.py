"""prpulse subcommands."""
