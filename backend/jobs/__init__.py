"""
Job entry points for the dub tracker.
The host's scheduler (cron, admin action) calls JobRunner; nothing here schedules itself.
"""
