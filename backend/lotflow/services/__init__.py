"""Engine services: one object per aggregate, plus pure ledger helpers."""
