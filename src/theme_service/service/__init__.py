# This file makes the 'service' directory a Python sub-package
# within the 'theme_service' package.
#
# It contains the core logic: token normalization, CSS variable
# derivation and the manager that keeps one default theme per owner.
