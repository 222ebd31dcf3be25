"""
YGOHub Service - Swiss tournaments and deck snapshots

Responsibilities:
- Tournament registry (create, join, start)
- Swiss rounds, pairings and standings
- Freezing deck collections into versioned snapshots
- Custom card editing with propagation into unlocked snapshots
"""
