# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

# Document store collections
INSPECTIONS_COLLECTION = "inspections"
PROPERTIES_COLLECTION = "properties"
DEFICIENCIES_COLLECTION = "deficiencies"
ARCHIVES_COLLECTION = "archives"
TEMPLATES_COLLECTION = "templates"
TEMPLATE_CATEGORIES_COLLECTION = "templateCategories"
TEAMS_COLLECTION = "teams"
USERS_COLLECTION = "users"
SYSTEM_COLLECTION = "system"
INTEGRATIONS_COLLECTION = "integrations"
NOTIFICATIONS_COLLECTION = "notifications"
REGISTRATION_TOKENS_COLLECTION = "registrationTokens"

# Tree store proxy roots
PROPERTY_INSPECTIONS_PATH = "/propertyInspections"
PROPERTY_INSPECTIONS_LIST_PATH = "/propertyInspectionsList"
COMPLETED_INSPECTIONS_PATH = "/completedInspections"
COMPLETED_INSPECTIONS_LIST_PATH = "/completedInspectionsList"
TEMPLATES_LIST_PATH = "/templatesList"
PROPERTY_TEMPLATES_PATH = "/propertyTemplates"
PROPERTY_TEMPLATES_LIST_PATH = "/propertyTemplatesList"

# Child segment under property scoped inspection proxies
INSPECTIONS_SEGMENT = "inspections"

# Marker stored on archived records to name their origin collection
ARCHIVE_COLLECTION_FIELD = "_collection"

# Actor recorded for transitions made by scheduled jobs
SYSTEM_USER = "system"

SECONDS_PER_DAY = 86400


def trello_system_id(property_id: str) -> str:
    """Document id holding a property's card id -> deficiency id map."""
    return f"trello-{property_id}"


def trello_integration_id(property_id: str) -> str:
    """Document id holding a property's board list configuration."""
    return f"trello-{property_id}"


SLACK_INTEGRATION_ID = "slack"
