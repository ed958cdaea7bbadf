"""
English-dub availability resolution.
Fans out across a priority-ordered cascade of sources, fuses their partial
verdicts into one confidence-scored decision, and caches it in two tiers.
"""
