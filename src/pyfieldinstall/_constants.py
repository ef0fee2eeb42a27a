"""Internal constants shared across the library."""

TELEMETRY_BASE_URL = "https://op1.smarttive.com"
USER_AGENT = "pyfieldinstall/1"

# ------------------------------------------------------------------
# Document store collection paths
# ------------------------------------------------------------------

DEVICES = "devices"
LOCATIONS = "locations"
TEAMS = "teams"
TEAM_MEMBERS_SUBCOLLECTION = "members"
TEAM_MEMBERSHIPS = "teamMembers"
INSTALLATIONS = "installations"
SERVER_DATA = "serverData"


def team_members_path(team_id: str) -> str:
    """Path of the ``members`` sub-collection for *team_id*."""
    return f"{TEAMS}/{team_id}/{TEAM_MEMBERS_SUBCOLLECTION}"


# ------------------------------------------------------------------
# Verification
# ------------------------------------------------------------------

#: Recorded as ``verifiedBy`` when the automated comparison approves.
SYSTEM_PRE_VERIFIED_BY = "System (Pre-verified)"
#: Recorded as ``verifiedBy`` when the automated comparison rejects.
SYSTEM_AUTO_REJECTED_BY = "System (Auto-rejected)"
AUTO_REJECTED_REASON_PREFIX = "Auto-rejected"

#: Bucket key for installations without a team.
UNASSIGNED_TEAM = "__unassigned__"
UNASSIGNED_TEAM_NAME = "Unassigned"

GOOGLE_MAPS_URL = "https://www.google.com/maps?q={lat},{lng}"
