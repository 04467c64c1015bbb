"""
Bot Texts

Fixed Bangla replies and the HTML product block format. Replies may use the
tags the web widget renders: b, strong, a, br and img.
"""
from app.conversation.session import ProductCard
from app.core.validation import TextSanitizer

GREETING = "হ্যালো! আমি আপনার সহায়ক। আজ কোন পণ্যটি খুঁজছেন?"
EMPTY_REPLY_DEFAULT = "বুঝেছি। আপনি কি দৈনন্দিন ব্যবহার নাকি গিফট হিসেবে চান? 🙂"
GENERIC_DEFAULT = "জি স্যার, কীভাবে সাহায্য করতে পারি?"
TURN_ERROR_FALLBACK = "দুঃখিত, একটু সমস্যা হয়েছে। বলবেন কি—আপনার বাজেট কতের মধ্যে?"
WEBHOOK_ERROR_REPLY = "দুঃখিত স্যার, একটু পর আবার চেষ্টা করুন।"
LLM_UNAVAILABLE_MESSAGE = "LLM unavailable: set OPENAI_API_KEY on server."

ORDER_FAILED = "দুঃখিত, অর্ডার সম্পন্ন করা যায়নি। একটু পরে আবার চেষ্টা করবেন, বা সাপোর্টে যোগাযোগ করুন।"
ORDER_FORM_FAILED = "দুঃখিত, অর্ডার সম্পন্ন করা যায়নি। পরে চেষ্টা করুন।"
ORDER_PLACED_SUMMARY = "অর্ডার প্লেস হয়েছে ✅"
INVALID_PHONE = "মোবাইল নম্বরটি সঠিক নয়। অনুগ্রহ করে BD মোবাইল নম্বর দিন (01XXXXXXXXX)."
MISSING_NAME_OR_ADDRESS = "নাম ও ঠিকানা প্রয়োজন।"
NO_ITEMS_SELECTED = "কোন পণ্যটি নিতে চান? তালিকা থেকে একটি নির্বাচন করুন বা লিংক পাঠান।"
CANCEL_WINDOW_EXCEEDED = "দুঃখিত স্যার, অর্ডারটি ২৪ ঘণ্টার বেশি পুরনো হওয়ায় আর বাতিল করা যাচ্ছে না।"

IMAGE_FAILED = "একটু নেটওয়ার্ক সমস্যা হয়েছে স্যার—দয়া করে আবার ছবিটি পাঠাবেন?"
IMAGE_ASK_PREFERENCE = "আপনি কোন রঙ/ডিজাইন বা বাজেট পছন্দ করবেন, স্যার? জানালে ঠিক মিলিয়ে দেখাচ্ছি।"
IMAGE_SHORT_FALLBACK = "ছবির ভিত্তিতে ধারণা পেলাম, স্যার। আপনি কোন দিকটা প্রাধান্য দেবেন—ডিজাইন, রঙ, নাকি বাজেট?"

SUMMARY_PREFIX = "সংক্ষিপ্ত সারাংশ: "

MAX_PRODUCT_BLOCKS = 8

_BANGLA_DIGITS = str.maketrans("0123456789.", "০১২৩৪৫৬৭৮৯।")


def to_bangla_digits(value: object) -> str:
    """Render ASCII digits (and the decimal point) with Bengali numerals"""
    return str(value).translate(_BANGLA_DIGITS)


def image_intro(query: str) -> str:
    return f"জি স্যার, মনে হচ্ছে {query} — নীচে কিছু মিল আছে:"


def order_confirmation(order_id: object, eta: str) -> str:
    return (
        f"<b>ধন্যবাদ!</b> আপনার অর্ডার আইডি: <strong>{order_id}</strong><br>"
        f"আনুমানিক ডেলিভারি: {eta}. আপডেটের জন্য যোগাযোগ করতে চাইলে জানাবেন।"
    )


def shipping_options_prompt(options: list[dict]) -> str:
    lines = [
        f"{i}. {opt.get('method_title', '')} — ফি: {to_bangla_digits(opt.get('total', '0'))} টাকা"
        for i, opt in enumerate(options, start=1)
    ]
    return "শিপিং অপশন নির্বাচন করুন:<br>" + "<br>".join(lines) + "<br>উদাহরণ: 1 লিখুন।"


def product_block(card: ProductCard) -> str:
    """One linked product image with its name and Bengali-digit price"""
    name = TextSanitizer.escape_html(card.name)
    price = to_bangla_digits(card.price or "0")
    return (
        f'<a href="{card.link}" target="_blank" rel="noopener noreferrer nofollow">'
        f'<img src="{card.image}" alt="{name}"></a><br>'
        f"<b>{name}</b> — {price} টাকা<br><br>"
    )


def product_blocks(cards: list[ProductCard]) -> str:
    """Up to eight product blocks; cards without an image are skipped"""
    return "".join(product_block(c) for c in cards[:MAX_PRODUCT_BLOCKS] if c.image)
