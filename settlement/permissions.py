# settlement/permissions.py

from rest_framework import permissions

class IsAuthenticatedAndCustomer(permissions.BasePermission):
    """Allow access only to authenticated users with the role 'customer'."""
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.role == 'customer')

class IsAuthenticatedAndSalonOwner(permissions.BasePermission):
    """Allow access only to authenticated users with the role 'salon_owner'."""
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.role == 'salon_owner')

class IsAuthenticatedAndAdmin(permissions.BasePermission):
    """Allow access only to authenticated users with the role 'admin'."""
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.role == 'admin')

class IsSalonOwner(permissions.BasePermission):
    """
    Object-level permission: the object (or its salon) must belong to the requester.
    """
    def has_object_permission(self, request, view, obj):
        salon = getattr(obj, 'salon', obj)
        return salon.owner_id == request.user.id
