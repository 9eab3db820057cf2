from storyprint.models.user import User
from storyprint.models.book import Book
from storyprint.models.print_order import PrintOrder
from storyprint.models.credit_transaction import CreditTransaction
from storyprint.models.print_order_event import PrintOrderEvent

# add ALL models here
