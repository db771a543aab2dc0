from __future__ import annotations

import random
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from modules.orders.dtos import CreateOrderDTO, OrderLineInputDTO
from modules.orders.models import Order
from modules.orders.providers import build_order_service
from modules.organization.models import Branch, Installer, Partner


class Command(BaseCommand):
    help = "Seed database with branches, installers and open orders for development."

    def add_arguments(self, parser):
        parser.add_argument("--orders", type=int, default=30)

    def handle(self, *args, **options):
        random.seed(42)
        self.stdout.write("Seeding development data...")

        branches = self._seed_branches()
        partners = self._seed_partners(branches)
        installers = self._seed_installers(branches)
        orders_created = self._seed_orders(branches, options["orders"])

        self.stdout.write(
            self.style.SUCCESS(
                "Seed completed: "
                f"branches={len(branches)}, "
                f"partners={len(partners)}, "
                f"installers={len(installers)}, "
                f"orders={orders_created}"
            )
        )

    def _seed_branches(self) -> list[Branch]:
        self.stdout.write("Creating branches...")
        branches: list[Branch] = []
        for code, name, region in [
            ("SEL01", "Seoul Central", "Seoul"),
            ("SEL02", "Seoul Gangnam", "Seoul"),
            ("ICN01", "Incheon", "Gyeonggi"),
            ("BSN01", "Busan Harbour", "Busan"),
        ]:
            branch, _ = Branch.objects.get_or_create(
                code=code, defaults={"name": name, "region": region}
            )
            branches.append(branch)
        self.stdout.write(self.style.SUCCESS("Creating branches... Done!"))
        return branches

    def _seed_partners(self, branches: list[Branch]) -> list[Partner]:
        self.stdout.write("Creating partners...")
        partners: list[Partner] = []
        for index, (code, name) in enumerate(
            [("HANIL", "Hanil Install Co."), ("DAEHAN", "Daehan Logistics")]
        ):
            partner, _ = Partner.objects.get_or_create(
                code=code,
                defaults={"name": name, "branch": branches[index % len(branches)]},
            )
            partners.append(partner)
        self.stdout.write(self.style.SUCCESS("Creating partners... Done!"))
        return partners

    def _seed_installers(self, branches: list[Branch]) -> list[Installer]:
        self.stdout.write("Creating installers...")
        installers: list[Installer] = []
        names = [
            "Kim Minjun",
            "Lee Seoyeon",
            "Park Jihoon",
            "Choi Yuna",
            "Jung Hyunwoo",
            "Kang Jiwoo",
            "Yoon Seojun",
            "Han Sora",
        ]
        for index, name in enumerate(names):
            installer, _ = Installer.objects.get_or_create(
                name=name, defaults={"branch": branches[index % len(branches)]}
            )
            installers.append(installer)
        self.stdout.write(self.style.SUCCESS("Creating installers... Done!"))
        return installers

    def _seed_orders(self, branches: list[Branch], count: int) -> int:
        self.stdout.write("Creating orders...")
        service = build_order_service()
        catalog = [
            ("AC-100", "Air conditioner"),
            ("WM-9", "Washing machine"),
            ("RF-500", "Refrigerator"),
            ("TV-55", "Television 55\""),
            ("DW-12", "Dishwasher"),
        ]
        existing = Order.objects.filter(remarks__startswith="Seed order").count()
        today = timezone.localdate()

        for i in range(existing, count):
            items = random.sample(catalog, k=random.randint(1, 3))
            service.create_order(
                CreateOrderDTO(
                    customer_name=f"Customer {i + 1:03d}",
                    customer_phone=f"010-{random.randint(1000, 9999)}-{random.randint(1000, 9999)}",
                    address={"city": random.choice(["Seoul", "Incheon", "Busan"])},
                    vendor=random.choice(["LG", "Samsung"]),
                    branch_id=random.choice(branches).id,
                    appointment_date=today + timedelta(days=random.randint(0, 14)),
                    appointment_time_window=random.choice(["09-12", "13-18"]),
                    remarks=f"Seed order {i + 1}",
                    lines=[
                        OrderLineInputDTO(
                            item_code=code,
                            item_name=name,
                            quantity=random.randint(1, 3),
                        )
                        for code, name in items
                    ],
                ),
                actor="seed",
            )

        self.stdout.write(self.style.SUCCESS("Creating orders... Done!"))
        return max(count - existing, 0)
