"""
Logon tracker — deployed to <ProgramData>\\FleetHygiene\\Tracker and run by
Task Scheduler at every user logon, with a copy of the hygiene_core package
beside it. Records the logon and exits 0, always.
"""

from hygiene_core.tracker import main


if __name__ == "__main__":
    main()
