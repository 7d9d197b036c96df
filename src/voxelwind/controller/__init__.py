"""
The CONTROLLER layer turns live emitters into per-tick snapshots and drives
the wind zones.
"""
