# This file makes the 'models' directory a Python sub-package
# within the 'theme_service' package.
#
# It contains the Pydantic models for token groups, complete token
# sets, normalization results and persisted theme records.
