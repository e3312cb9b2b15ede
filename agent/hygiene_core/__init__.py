"""
hygiene_core — Fleet Hygiene Agent (stale profile reclamation)
==============================================================
Architecture: short single-pass runs triggered by Task Scheduler / MDM.

  constants.py    → Version, thresholds, names, built-in exclusions
  config.py       → Paths, logging, AgentSettings load/save
  models.py       → ProfileRecord, LiveProfile, typed outcomes
  store.py        → Timestamp store (registry / SQLite)
  platform_win.py → Windows: profiles, session identity, logon task, deletion
  disk.py         → Directory size, tree removal
  seeder.py       → Seeder (initial records from existing profiles)
  tracker.py      → LogonTracker (per-logon stamp + health counter)
  reconciler.py   → Reconciler (stale detection, 3-step removal)
  validator.py    → InstallValidator (read-only compliance checks)
  installer.py    → Installer (place tracker, register task, seed)
  detector.py     → Profile-count detector
  http_client.py  → HTTP session with retry/pooling
  reporting.py    → Optional fleet report upload + offline buffer
  runner.py       → typer CLI
"""
