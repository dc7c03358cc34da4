"""Response messages and fixed identifiers shared across services."""

# Claim keys / literal values
ROLE_CLAIM_KEY = "role"
STATE_LOCATION_KEY = "state"
SCHOOL_LOCATION_KEY = "school"
TEACHER_ROLE = "teacher"
ADMINISTRATOR_ROLE = "administrator"

SOLUTION_TYPE_OBSERVATION = "observation"
REFERENCE_FROM_PROJECT = "project"
SOLUTION_STATUS_ACTIVE = "active"
SOLUTION_STATUS_INACTIVE = "inactive"
CREATE_OBSERVATION_PATH = "/create-observation/"
SUB_ENTITY_CACHE_PREFIX = "subEntityTypes_"

FILTER_CREATED_BY_ME = "createdByMe"
FILTER_ASSIGN_TO_ME = "assignedToMe"

NOTIFICATION_STATUS_SUCCESS = "success"

# Validation
REQUIRED_USER_AUTH_TOKEN = "Required field user auth token is missing"
INVALID_USER_ID = "Invalid user id"
USER_ID_REQUIRED_CHECK = "Required field user id is missing"
LINK_REQUIRED_CHECK = "Required field link is missing"
INVALID_OBSERVATION_ENTITY_ID = "Invalid observation or entity id"
OBSERVATION_OR_SOLUTION_CHECK = "Either observation id or solution id is required"
UPDATE_QUERY_REQUIRED = "Update query is required"
UPDATE_OBJECT_REQUIRED = "Update object is required"

# Not found / permission
SOLUTION_NOT_FOUND = "Solution not found"
SOLUTION_NOT_FOUND_OR_NOT_A_TARGETED = "Solution not found or not targeted to the user"
SOLUTION_DETAILS_NOT_FOUND = "Solution details not found"
OBSERVATION_NOT_FOUND = "Observation not found"
OBSERVATION_SUBMISSION_NOT_FOUND = "Observation submission not found"
ENTITIES_NOT_FOUND = "Entities not found"
USER_ROLES_NOT_FOUND = "User roles not found"
OBSERVATION_NOT_RELEVANT_FOR_USER = "Observation is not relevant for the user"
APP_NOT_FOUND = "App not found"
NO_COMPLETED_OBSERVATIONS = "No completed observations found"
OBSERVATION_NOT_PUBLISHED = "Observation is either completed or not published"

# Success / status strings
UPDATED_SUCCESSFULLY = "Updated successfully."
ENTITIES_NOT_UPDATE = "Some entities could not be added"
ENTITY_REMOVED = "Entity removed successfully"
INVALID_ENTITY_TYPE = "Invalid entity type"
FOUND_SUBMISSION = "Submission found"
CREATED_SOLUTION = "Solution created successfully"
OBSERVATION_LINK_GENERATED = "Observation link generated"
OBSERVATION_LINK_VERIFIED = "Observation link verified"
INVALID_LINK = "Invalid link"
LINK_IS_EXPIRED = "Link is expired"
OBSERVATION_SUBMISSIONS_LIST_FETCHED = "Observation submissions list fetched"
USER_ASSIGNED_OBSERVATION_FETCHED = "User assigned observations fetched"
TARGETED_OBSERVATION_FETCHED = "Targeted observations fetched"
OBSERVATION_ENTITIES_FETCHED = "Observation entities fetched"
UPDATED_DOCUMENT_SUCCESSFULLY = "Document updated successfully"
FAILED_TO_UPDATE = "Failed to update"
NOTIFICATION_PUSHED = "Notification pushed"
