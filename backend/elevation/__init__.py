"""
Derived 3D (height/extrusion) data kept beside, not inside, feature geometry.
"""
