"""Study groups backend package.

HTTP API, services and persistence for study groups, their coordinates,
group admins (persons) and locations, plus YAML bulk import jobs.
"""
