# This file makes the 'utils' directory a Python sub-package
# within the 'theme_service' package.
#
# It contains connection helpers shared by the storage backends.
