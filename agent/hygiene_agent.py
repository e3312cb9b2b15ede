"""
Fleet Hygiene Agent
===================
Tracks per-user logons on shared machines and removes profiles that have
not logged on within the inactivity threshold.

Usage:
    python hygiene_agent.py install [--what-if] [--uninstall]
    python hygiene_agent.py reconcile --days-threshold 90 [--dry-run]
    python hygiene_agent.py validate
    python hygiene_agent.py count-profiles --profile-threshold 30
"""

from hygiene_core.runner import main


if __name__ == "__main__":
    main()
