# settlement/signals.py


from django.db.models.signals import post_save
from django.dispatch import receiver
from .models import CustomUser, Wallet

@receiver(post_save, sender=CustomUser)
def ensure_customer_wallet(sender, instance: CustomUser, created, **kwargs):
    if created and instance.role == "customer":
        Wallet.objects.get_or_create(user=instance)
