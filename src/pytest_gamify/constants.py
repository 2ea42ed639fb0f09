"""Defaults, user-facing messages and report locations."""

from __future__ import annotations

# Per-project defaults
CURRENT_CHALLENGES = 3
CURRENT_QUESTS = 1
STORED_CHALLENGES = 2
SEARCH_COMMIT_COUNT = 50
REPORT_TIMEOUT = 30.0
RANK_BIAS = 1.5

# Report paths relative to the workspace root
JACOCO_RESULTS_PATH = "target/site/jacoco"
JACOCO_CSV_PATH = "target/site/jacoco/jacoco.csv"
MUTATION_REPORT_PATH = "target/pit-reports/mutations.xml"

SOURCE_EXTENSIONS = ("java", "kt")
SOURCE_ROOTS = ("java", "kotlin", "scala", "groovy")

# Relative probability of each variant when a slot is filled
CHALLENGE_WEIGHTS: dict[str, float] = {
    "class": 15.0,
    "method": 25.0,
    "line": 40.0,
    "mutation": 20.0,
    "build": 0.0,
}

# Attempts per slot before a generation error dummy is emitted
MAX_GENERATION_ATTEMPTS = 5

NOTHING_DEVELOPED = "You haven't developed anything lately"
NO_QUEST = (
    "No quest could be generated. This could mean that none of the prerequisites was met, "
    "please try again later."
)
REJECTED_QUEST = "Previous quest was rejected, please run a new build to generate a new quest"
NOT_SOLVED = "Not solved"
NOT_SOLVABLE = "Not solvable"
NO_REASON_PROVIDED = "No reason provided"
MUTATION_FALLBACK = "The mutated line could not be reconstructed, have a look at the description"

# Team of users who participate alone
NO_TEAM_TEAM_NAME = "---"


class Error:
    """User-facing validation messages."""

    GENERATION = "There was an error with generating a new challenge"
    NO_CHALLENGE_EXISTS = "The challenge does not exist"
    NO_QUEST_EXISTS = "The quest does not exist"
    NO_USER_SIGNED_IN = "There is no user signed in"
    NOT_PARTICIPATING = "The user does not participate in the project"
    SAVING = "There was an error with saving"
    NO_REASON = "Please insert your reason for rejection"
    REJECT_DUMMY = "Dummies cannot be rejected - please run another build"
    STORE_DUMMY = "Dummies cannot be stored - please run another build"
    STORAGE_LIMIT = "Storage Limit reached"
    RECEIVER_IS_SELF = "Cannot send challenges to yourself"
    USER_NOT_FOUND = "User not found"
    SENDING_DISABLED = "Sending challenges is disabled for this project"
    AMBIGUOUS_SELECTION = "More than one challenge matches the selection"
    NO_TEAM_NAME = "Insert a name for the team"
    NO_TEAM = "No team specified"
    UNKNOWN_TEAM = "The specified team does not exist"
    UNKNOWN_USER = "No user with the specified name found"
    USER_ALREADY_IN_TEAM = "The user is already participating in a team"
    TEAM_NAME_TAKEN = "The team already exists - please use another name for your team"
