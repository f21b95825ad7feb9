"""
Offline simulation harness for the daily evaluation exchange.

Important: Nothing in `pairnotes/` should import from `evaluation/`.
Run scripts from the repo root, e.g.:

  python -m evaluation.simulate_couple --days 60
  python -m evaluation.report
"""
